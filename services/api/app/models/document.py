"""Stored document model.

Backs SqlDocumentStore: one row per (collection, key) holding a JSON document.

Example: collection="places", key="pl_3f2a...", data={"name": "Bo-Kaap", ...}
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.stores.postgres import Base


class StoredDocument(Base):
    """A JSON document addressed by collection + key."""

    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    key: Mapped[str] = mapped_column(String(255), primary_key=True)

    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<StoredDocument {self.collection}/{self.key}>"
