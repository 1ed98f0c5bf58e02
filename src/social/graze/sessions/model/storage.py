"""Session store data model.

Provides the SQLAlchemy model backing the database session store: a plain
key/value table with an optional expiry per row.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Index, String, orm
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON
from typing_extensions import Annotated

str512 = Annotated[str, 512]


class Base(orm.DeclarativeBase):
    """Declarative base of the session store tables."""

    type_annotation_map = {
        str512: String(512),
    }


class SessionStoreEntry(Base):
    """Key/value entry of the session store.

    Rows with an ``expires_at`` in the past are treated as absent and removed
    by the store's cleanup.
    """

    __tablename__ = "oauth_session_store"

    key: Mapped[str512] = mapped_column(primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (Index("idx_oauth_session_store_expires", "expires_at"),)
