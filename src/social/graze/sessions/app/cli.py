import json
import logging
from logging.config import dictConfig

from aiohttp import web

from social.graze.sessions.app.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(settings: Settings) -> None:
    """
    Configure logging for the session service.

    A dictConfig file named by LOGGING_CONFIG_FILE takes precedence. Otherwise
    logs go to stderr, and aiohttp's per-request access log is only shown in
    debug mode.
    """
    if settings.logging_config_file:
        with open(settings.logging_config_file) as fl:
            dictConfig(json.load(fl))
        return

    level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(format=LOG_FORMAT, level=level)
    logging.getLogger("aiohttp.access").setLevel(
        logging.DEBUG if settings.debug else logging.WARNING
    )


def invoke():
    settings = Settings()  # type: ignore
    configure_logging(settings)

    from social.graze.sessions.app.server import start_web_server

    web.run_app(start_web_server(settings), port=settings.http_port)


if __name__ == "__main__":
    invoke()
