"""
Contact Store - persistence boundary of the reconciliation engine
Defines the store contract the engine depends on and its SQLAlchemy
implementation. Every lookup ignores soft-deleted contacts and returns
contacts oldest first (created_at, then id).
"""

import functools
import logging
from contextlib import asynccontextmanager
from typing import AsyncContextManager, List, Optional, Protocol

from sqlalchemy import select, update, or_
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from database import DatabaseManager, db_manager
from models.base import utcnow
from models.contact import Contact, LinkPrecedence
from schemas.contact import ContactRecord
from services.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class ContactStore(Protocol):
    """Record-level operations the reconciliation engine performs"""

    async def find_matching(self, email: Optional[str], phone: Optional[str]) -> List[ContactRecord]:
        """Contacts whose email equals `email` OR whose phone equals `phone`"""
        ...

    async def find_by_id(self, contact_id: int) -> Optional[ContactRecord]:
        ...

    async def find_by_parent(self, parent_id: int) -> List[ContactRecord]:
        """Contacts whose linked_id equals `parent_id`"""
        ...

    async def find_group(self, primary_id: int) -> List[ContactRecord]:
        """The contact `primary_id` itself plus every contact linked to it"""
        ...

    async def create(
        self,
        email: Optional[str],
        phone: Optional[str],
        linked_id: Optional[int],
        precedence: LinkPrecedence,
    ) -> ContactRecord:
        ...

    async def update_link(
        self, contact_id: int, linked_id: Optional[int], precedence: LinkPrecedence
    ) -> ContactRecord:
        ...

    async def repoint_children(self, old_parent_id: int, new_parent_id: int) -> int:
        """Move every child of `old_parent_id` under `new_parent_id`; returns rows updated"""
        ...


class StoreProvider(Protocol):
    """Hands out a ContactStore bound to one transaction"""

    backend: str

    def transaction(self) -> AsyncContextManager[ContactStore]:
        ...

    async def ping(self) -> bool:
        ...


def _is_connection_failure(error: Exception) -> bool:
    """
    True for failures reaching the database; integrity and data errors are
    caused by the statement itself and are not retried as outages
    """
    if isinstance(error, (OperationalError, InterfaceError, OSError)):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


def _store_operation(method):
    """Re-raise connection failures as StoreUnavailableError"""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except (DBAPIError, OSError) as e:
            if not _is_connection_failure(e):
                raise
            logger.error(f"Contact store error in {method.__name__}: {e}")
            raise StoreUnavailableError(method.__name__, e) from e

    return wrapper


class SqlAlchemyContactStore:
    """
    ContactStore backed by an AsyncSession
    The session's transaction is owned by the caller (see SqlAlchemyStoreProvider)
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _fetch_all(self, query) -> List[ContactRecord]:
        result = await self.session.execute(query)
        return [ContactRecord.model_validate(contact) for contact in result.scalars().all()]

    @staticmethod
    def _active_contacts():
        return select(Contact).where(Contact.deleted_at.is_(None))

    @staticmethod
    def _oldest_first(query):
        return query.order_by(Contact.created_at.asc(), Contact.id.asc())

    @_store_operation
    async def find_matching(self, email: Optional[str], phone: Optional[str]) -> List[ContactRecord]:
        conditions = []

        if email:
            conditions.append(Contact.email == email)
        if phone:
            conditions.append(Contact.phone_number == phone)

        if not conditions:
            return []

        # Row locks keep overlapping merges on the same contacts serialized
        query = self._oldest_first(self._active_contacts().where(or_(*conditions))).with_for_update()
        return await self._fetch_all(query)

    @_store_operation
    async def find_by_id(self, contact_id: int) -> Optional[ContactRecord]:
        query = self._active_contacts().where(Contact.id == contact_id).with_for_update()
        result = await self.session.execute(query)
        contact = result.scalar_one_or_none()
        return ContactRecord.model_validate(contact) if contact is not None else None

    @_store_operation
    async def find_by_parent(self, parent_id: int) -> List[ContactRecord]:
        query = self._oldest_first(self._active_contacts().where(Contact.linked_id == parent_id))
        return await self._fetch_all(query)

    @_store_operation
    async def find_group(self, primary_id: int) -> List[ContactRecord]:
        query = self._oldest_first(
            self._active_contacts().where(
                or_(Contact.id == primary_id, Contact.linked_id == primary_id)
            )
        )
        return await self._fetch_all(query)

    @_store_operation
    async def create(
        self,
        email: Optional[str],
        phone: Optional[str],
        linked_id: Optional[int],
        precedence: LinkPrecedence,
    ) -> ContactRecord:
        now = utcnow()
        contact = Contact(
            email=email,
            phone_number=phone,
            linked_id=linked_id,
            link_precedence=precedence,
            created_at=now,
            updated_at=now,
            deleted_at=None
        )

        self.session.add(contact)
        await self.session.flush()  # Get the ID
        return ContactRecord.model_validate(contact)

    @_store_operation
    async def update_link(
        self, contact_id: int, linked_id: Optional[int], precedence: LinkPrecedence
    ) -> ContactRecord:
        contact = await self.session.get(Contact, contact_id)
        if contact is None:
            raise LookupError(f"Contact {contact_id} does not exist")

        contact.linked_id = linked_id
        contact.link_precedence = precedence
        contact.updated_at = utcnow()

        await self.session.flush()
        return ContactRecord.model_validate(contact)

    @_store_operation
    async def repoint_children(self, old_parent_id: int, new_parent_id: int) -> int:
        result = await self.session.execute(
            update(Contact)
            .where(Contact.linked_id == old_parent_id, Contact.deleted_at.is_(None))
            .values(linked_id=new_parent_id, updated_at=utcnow())
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount


class SqlAlchemyStoreProvider:
    """StoreProvider running each transaction in its own database session"""

    backend = "sqlalchemy"

    def __init__(self, manager: Optional[DatabaseManager] = None):
        self.db_manager = manager or db_manager

    @asynccontextmanager
    async def transaction(self):
        try:
            async with self.db_manager.get_session() as session:
                yield SqlAlchemyContactStore(session)
        except (DBAPIError, OSError) as e:
            if not _is_connection_failure(e):
                raise
            raise StoreUnavailableError("transaction", e) from e

    async def ping(self) -> bool:
        return await self.db_manager.test_connection()
