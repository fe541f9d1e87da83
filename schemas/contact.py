"""
Store-facing contact schemas
ContactRecord is the immutable snapshot of a stored contact handed to the
reconciliation engine; ConsolidatedIdentity is the engine's result
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from models.contact import LinkPrecedence


class ContactRecord(BaseModel):
    """
    Snapshot of one row of the contacts table
    Built from ORM rows (from_attributes) or directly by the in-memory store
    """
    id: int
    email: Optional[str] = None
    phone_number: Optional[str] = None
    linked_id: Optional[int] = None
    link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    @field_validator('created_at', 'updated_at', 'deleted_at')
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """SQLite hands back naive timestamps; every stored time is UTC"""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def age_key(self) -> Tuple[datetime, int]:
        """Oldest-first ordering: creation time, then id on clock ties"""
        return (self.created_at, self.id)

    class Config:
        from_attributes = True
        frozen = True


class ConsolidatedIdentity(BaseModel):
    """
    Everything known about one customer: the primary contact id, the
    de-duplicated emails and phone numbers (primary's own values first)
    and the secondary contact ids in creation order
    """
    primary_id: int
    emails: List[str] = Field(default_factory=list)
    phone_numbers: List[str] = Field(default_factory=list)
    secondary_ids: List[int] = Field(default_factory=list)
