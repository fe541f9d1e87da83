"""
Pydantic schemas for Identity Reconciliation API
Contains request/response models, the store-facing contact record and the
consolidated identity produced by the reconciliation engine.
"""

from .contact import ContactRecord, ConsolidatedIdentity
from .identify import (
    IdentifyRequest,
    ContactResponse,
    IdentifyResponse,
    ErrorResponse
)

# Export all schemas for easy importing
__all__ = [
    "ContactRecord",
    "ConsolidatedIdentity",
    "IdentifyRequest",
    "ContactResponse",
    "IdentifyResponse",
    "ErrorResponse"
]
