class DomainError(Exception):
    """Base exception for ledger errors."""


class ValidationError(DomainError):
    """Malformed or missing input. Raised before anything is written."""


class UnavailableError(DomainError):
    """Admission refused for operational reasons. Nothing was written."""


class ConflictError(DomainError):
    """Request contradicts state that is already committed."""


class NotFoundError(DomainError):
    """Referenced entity does not exist."""


class InternalError(DomainError):
    """Storage failure or broken reference. The unit of work was rolled back."""


class InvalidAmountError(ValidationError):
    """Raised when a transfer amount is not a positive 64-bit integer."""

    def __init__(self, amount: object, reason: str) -> None:
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount!r}: {reason}")


class MissingFieldError(ValidationError):
    """Raised when a required field is empty."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"{field} is required")


class InvalidMetadataError(ValidationError):
    """Raised when transfer metadata cannot be canonically serialized."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid metadata: {reason}")


class InvalidZoneStatusError(ValidationError):
    def __init__(self, status: str) -> None:
        self.status = status
        super().__init__(f"Invalid zone status {status!r}: expected one of OK, DEGRADED, DOWN")


class InvalidIncidentActionError(ValidationError):
    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(f"Invalid incident action {action!r}: {reason}")


class ZoneUnavailableError(UnavailableError):
    """Raised when the zone gate blocks a transfer."""

    def __init__(self, zone_id: str, reason: str = "zone down") -> None:
        self.zone_id = zone_id
        self.reason = reason
        super().__init__(f"Zone {zone_id} unavailable: {reason}")


class IdempotencyConflictError(ConflictError):
    """Raised when a request_id is reused for a different payload."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Request {request_id} was already used for a different transfer")


class ZoneNotFoundError(NotFoundError):
    def __init__(self, zone_id: str) -> None:
        self.zone_id = zone_id
        super().__init__(f"Zone {zone_id} not found")


class TransactionNotFoundError(NotFoundError):
    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} not found")


class IncidentNotFoundError(NotFoundError):
    def __init__(self, incident_id: str) -> None:
        self.incident_id = incident_id
        super().__init__(f"Incident {incident_id} not found")


class BalanceNotFoundError(NotFoundError):
    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(f"Balance for account {account_id} not found")


class UnknownZoneError(InternalError):
    """Raised when a transfer references a zone that does not exist."""

    def __init__(self, zone_id: str) -> None:
        self.zone_id = zone_id
        super().__init__(f"Transfer references unknown zone {zone_id}")


class DuplicateRequestError(DomainError):
    """Raised by the store when a concurrent unit committed the same request_id first."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Request {request_id} was inserted concurrently")
