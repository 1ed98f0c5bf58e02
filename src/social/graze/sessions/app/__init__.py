"""
Session Service Application Layer

This package implements a small aiohttp service around the session manager. It
shows how a host application wires the manager to HTTP: configuration from the
environment, a Redis backed session store, refresh locks, metrics and error
reporting.

Key Components:
- cli.py: Entry point for running the application
- server.py: Web server configuration, middleware and startup/shutdown
- config.py: Configuration management using Pydantic settings
- handlers/: Request handlers for the browser, mobile and internal endpoints

The application uses several middleware layers:
- Statsd middleware for metrics collection
- Sentry middleware for error reporting
- Session cookie middleware writing cookie changes to responses

It provides the following main endpoints:
- OAuth and browser session endpoints (/auth/*)
- Mobile token endpoints (/auth/mobile/*)
- Internal health endpoints (/internal/*)
"""
