"""In-memory ContactStore (no DB). Used by the tests and the "memory" backend."""

import asyncio
import itertools
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Dict, List, Optional

from models.base import utcnow
from models.contact import LinkPrecedence
from schemas.contact import ContactRecord


class InMemoryContactStore:
    """
    Stores contacts in a dict keyed by id. Acts as its own StoreProvider:
    transactions are serialized by a lock but writes are not rolled back.

    `clock` supplies creation/update timestamps so tests can force ties.
    """

    backend = "memory"

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._contacts: Dict[int, ContactRecord] = {}
        self._ids = itertools.count(1)
        self._lock: Optional[asyncio.Lock] = None

    @asynccontextmanager
    async def transaction(self):
        # Created inside the running loop; a lock built in __init__ binds to the wrong loop on 3.9
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            yield self

    async def ping(self) -> bool:
        return True

    def all(self) -> List[ContactRecord]:
        """Every stored contact, soft-deleted ones included, oldest first"""
        return sorted(self._contacts.values(), key=lambda c: c.age_key)

    def _active(self, predicate) -> List[ContactRecord]:
        return [c for c in self.all() if c.deleted_at is None and predicate(c)]

    async def find_matching(self, email: Optional[str], phone: Optional[str]) -> List[ContactRecord]:
        if not email and not phone:
            return []
        return self._active(
            lambda c: (email is not None and c.email == email)
            or (phone is not None and c.phone_number == phone)
        )

    async def find_by_id(self, contact_id: int) -> Optional[ContactRecord]:
        contact = self._contacts.get(contact_id)
        if contact is None or contact.deleted_at is not None:
            return None
        return contact

    async def find_by_parent(self, parent_id: int) -> List[ContactRecord]:
        return self._active(lambda c: c.linked_id == parent_id)

    async def find_group(self, primary_id: int) -> List[ContactRecord]:
        return self._active(lambda c: c.id == primary_id or c.linked_id == primary_id)

    async def create(
        self,
        email: Optional[str],
        phone: Optional[str],
        linked_id: Optional[int],
        precedence: LinkPrecedence,
    ) -> ContactRecord:
        now = self._clock()
        contact = ContactRecord(
            id=next(self._ids),
            email=email,
            phone_number=phone,
            linked_id=linked_id,
            link_precedence=precedence,
            created_at=now,
            updated_at=now,
        )
        self._contacts[contact.id] = contact
        return contact

    async def update_link(
        self, contact_id: int, linked_id: Optional[int], precedence: LinkPrecedence
    ) -> ContactRecord:
        if contact_id not in self._contacts:
            raise LookupError(f"Contact {contact_id} does not exist")

        contact = self._contacts[contact_id].model_copy(
            update={"linked_id": linked_id, "link_precedence": precedence, "updated_at": self._clock()}
        )
        self._contacts[contact_id] = contact
        return contact

    async def repoint_children(self, old_parent_id: int, new_parent_id: int) -> int:
        children = await self.find_by_parent(old_parent_id)
        for child in children:
            self._contacts[child.id] = child.model_copy(
                update={"linked_id": new_parent_id, "updated_at": self._clock()}
            )
        return len(children)

    def soft_delete(self, contact_id: int) -> None:
        self._contacts[contact_id] = self._contacts[contact_id].model_copy(
            update={"deleted_at": self._clock()}
        )
