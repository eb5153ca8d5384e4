from __future__ import annotations


class DomainError(Exception):
    """Base error raised by billing services; mapped to HTTP responses at the API edge."""

    status_code = 400

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class NotFoundError(DomainError):
    status_code = 404


class ValidationError(DomainError):
    status_code = 422

    def __init__(self, detail: str, reasons: list[str] | None = None) -> None:
        self.reasons = list(reasons or [])
        if self.reasons:
            detail = f"{detail}: {'; '.join(self.reasons)}"
        super().__init__(detail)


class ConflictError(DomainError):
    status_code = 409


class CycleNumberConflictError(ConflictError):
    """Raised when another writer already took the computed cycle number."""

    def __init__(self, subscription_id: object, cycle_number: int) -> None:
        self.subscription_id = subscription_id
        self.cycle_number = cycle_number
        super().__init__(f"cycle number {cycle_number} already exists for subscription {subscription_id}")


class OrderValidationError(ValidationError):
    pass


class NoAvailableCapacityError(ConflictError):
    pass
