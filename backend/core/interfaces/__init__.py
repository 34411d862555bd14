# Interfaces (Abstract Contracts)
# Adapters implement these interfaces
from .repositories import BillingRepository
from .services import (
    PaymentProcessor,
    ProcessorAddon,
    ProcessorCustomer,
    ProcessorOrder,
    ProcessorPayment,
    ProcessorPlan,
    ProcessorSubscription,
)

__all__ = [
    "BillingRepository",
    "PaymentProcessor",
    "ProcessorCustomer",
    "ProcessorPlan",
    "ProcessorSubscription",
    "ProcessorPayment",
    "ProcessorOrder",
    "ProcessorAddon",
]
