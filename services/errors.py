"""
Error kinds raised by the reconciliation engine and its contact stores
"""


class ReconciliationError(Exception):
    """Base class for identity reconciliation failures"""


class InvalidInputError(ReconciliationError):
    """Neither an email nor a phone number was supplied"""

    def __init__(self, message: str = "Either email or phoneNumber must be provided"):
        super().__init__(message)
        self.message = message


class StoreUnavailableError(ReconciliationError):
    """The contact store could not be reached or failed mid-operation"""

    def __init__(self, operation: str, cause: Exception = None):
        message = f"Contact store failed during {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.operation = operation
        self.cause = cause
