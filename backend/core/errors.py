"""Billing error taxonomy shared by adapters, services and routes."""

from typing import Optional


class BillingError(Exception):
    """Base exception for billing failures."""

    pass


class ValidationError(BillingError):
    """Raised when required input is missing or malformed."""

    pass


class NotFoundError(BillingError):
    """Raised when a foreign id is unknown both locally and at the processor."""

    pass


class InvalidSignatureError(BillingError):
    """Raised when a webhook body does not match its signature."""

    pass


class PersistenceError(BillingError):
    """Raised when a store write fails and cannot be resolved by re-reading."""

    pass


class ProcessorError(BillingError):
    """Raised when the payment processor rejects or fails a call."""

    def __init__(
        self,
        description: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(description)
        self.description = description
        self.code = code or "PROCESSOR_ERROR"
        self.status_code = status_code

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "description": self.description}


class PlanNotFoundError(ProcessorError):
    """Raised when the processor refuses a subscription because the plan is unknown."""

    pass


class SubscriptionCreationError(ProcessorError):
    """Raised when the processor rejects a subscription creation request."""

    pass


class ProcessorNotFoundError(ProcessorError):
    """Raised when the processor has no record for the requested id."""

    pass
