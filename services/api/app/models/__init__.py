"""Persisted models.

- documents: SQLAlchemy table backing SqlDocumentStore
- places / place_events / place_actions: lifecycle documents
- place_cache*: external place identity cache documents
"""

from app.models.document import StoredDocument
from app.models.place import CachedExternalPlace, Place, PlaceEvent, compute_place_id

__all__ = ["StoredDocument", "Place", "PlaceEvent", "CachedExternalPlace", "compute_place_id"]
