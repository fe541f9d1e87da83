"""
Business logic services for Identity Reconciliation API
Contains the identity reconciliation engine and the contact stores it
runs against.
"""

from .contact_store import ContactStore, StoreProvider, SqlAlchemyContactStore, SqlAlchemyStoreProvider
from .errors import ReconciliationError, InvalidInputError, StoreUnavailableError
from .identity_service import IdentityService
from .memory_store import InMemoryContactStore

# Export all services for easy importing
__all__ = [
    "ContactStore",
    "StoreProvider",
    "SqlAlchemyContactStore",
    "SqlAlchemyStoreProvider",
    "InMemoryContactStore",
    "IdentityService",
    "ReconciliationError",
    "InvalidInputError",
    "StoreUnavailableError"
]
