"""Custom exception hierarchy for tax-settlement."""


class SettlementError(Exception):
    """Base exception for all tax-settlement errors."""

    code = "SettlementError"


class EntityNotFoundError(SettlementError):
    """Raised when a referenced entity does not exist."""

    code = "NotFound"


class ReferentialIntegrityError(EntityNotFoundError):
    """Raised when a foreign key reference is violated."""


class InvalidEntityStateError(SettlementError):
    """Raised when an entity is in an invalid state for the operation."""

    code = "InvalidState"


class ConfigurationError(SettlementError):
    """Raised when configuration is invalid or missing."""

    code = "ConfigurationError"


class SinkError(SettlementError):
    """Raised when a sink operation fails."""

    code = "SinkError"


class ValidationError(SettlementError):
    """Base for user-correctable input errors."""

    code = "ValidationError"


class InvalidAmountError(ValidationError):
    """Raised for non-numeric, zero or negative amounts."""

    code = "InvalidAmount"


class NoRemainingBalanceError(ValidationError):
    """Raised when there is nothing left to collect."""

    code = "NoRemainingBalance"


class DiscountExceedsBalanceError(ValidationError):
    """Raised when a discount is larger than the current remaining amount."""

    code = "DiscountExceedsBalance"

    def __init__(self, message: str, remaining_amount=None) -> None:
        super().__init__(message)
        self.remaining_amount = remaining_amount


class ReasonRequiredError(ValidationError):
    """Raised when an exemption is requested without a reason."""

    code = "ReasonRequired"


class PolicyValidationError(ValidationError):
    """Raised when a commission or revenue split policy is out of range."""

    code = "PolicyValidation"


class ConcurrentUpdateConflictError(SettlementError):
    """Raised when an optimistic version check fails.

    Callers should retry the whole operation.
    """

    code = "ConcurrentUpdateConflict"
