from datetime import datetime, timezone
from beanie import Document
from pydantic import Field

from ..utils import UTCDateTime


class BaseDocument(Document):
    """Base document class with common fields and methods"""

    # Timestamps
    created_at: UTCDateTime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: UTCDateTime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        abstract = True  # Make this an abstract base class

    def update_timestamp(self):
        """Update the last modified timestamp"""
        self.updated_at = datetime.now(timezone.utc)

    def to_public_dict(self) -> dict:
        """JSON-safe dict with the ObjectId rendered as a plain string"""
        data = self.model_dump(mode="json", exclude={"id", "revision_id"})
        data["id"] = str(self.id)
        return data
