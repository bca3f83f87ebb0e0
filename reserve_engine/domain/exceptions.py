"""Domain-specific exceptions

Three families matter to callers: validation (bad input, rejected before the
store is touched), not-found, and conflict (business rule violations).
"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Input failed validation"""

    pass


class NotFoundError(DomainException):
    """Referenced profile, chargeback, assessment or ledger entry does not exist"""

    pass


class ConflictError(DomainException):
    """Operation violates a business rule given current state"""

    pass


class InsufficientReserveError(ConflictError):
    """Reserve balance cannot cover the requested release or debit adjustment"""

    pass


class DuplicateChargebackError(ConflictError):
    """A chargeback with the same external dispute id already exists"""

    pass


class DuplicateProfileError(ConflictError):
    """Merchant already has a risk profile"""

    pass


class InvalidStateTransitionError(ConflictError):
    """Requested status change is not allowed from the current status"""

    pass


class ConcurrentModificationError(ConflictError):
    """Another writer committed against the same profile first"""

    pass
