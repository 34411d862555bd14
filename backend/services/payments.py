"""
One-off orders and payment bookkeeping.
"""

import logging
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.subscription import PaymentStatus
from core.errors import ValidationError
from core.interfaces.services import PaymentProcessor, ProcessorOrder, ProcessorPayment
from infrastructure.database.models.billing import Payment
from infrastructure.database.repositories import SqlBillingRepository

logger = logging.getLogger(__name__)


class PaymentService:
    """Creates orders, captures payments and keeps the Payment table in sync."""

    def __init__(
        self,
        db: AsyncSession,
        processor: PaymentProcessor,
        repository: Optional[SqlBillingRepository] = None,
    ):
        self.db = db
        self.processor = processor
        self.repository = repository or SqlBillingRepository(db)

    @staticmethod
    def _apply(payment: Payment, remote: ProcessorPayment, customer_id: Optional[str]) -> None:
        try:
            payment.status = PaymentStatus(remote.status).value
        except ValueError:
            logger.warning(f"Unknown payment status {remote.status!r} for {remote.id}, keeping {payment.status}")
        payment.amount = remote.amount or payment.amount
        payment.currency = remote.currency or payment.currency
        payment.method = remote.method or payment.method
        payment.razorpay_order_id = remote.order_id or payment.razorpay_order_id
        payment.customer_id = customer_id or payment.customer_id
        payment.payment_details = dict(remote.raw or {})

    async def record_payment(self, remote: ProcessorPayment) -> Payment:
        """
        Upsert a payment keyed by its processor id.

        Applying the same payment twice leaves a single row in the same state.
        """
        customer_id = None
        if remote.customer_id:
            customer = await self.repository.find_customer(remote.customer_id)
            customer_id = customer.id if customer else None

        payment = await self.repository.find_payment(remote.id)
        if payment is None:
            payment = Payment(
                id=str(uuid4()),
                razorpay_payment_id=remote.id,
                amount=remote.amount,
                currency=remote.currency,
                status=PaymentStatus.CREATED.value,
            )
            self._apply(payment, remote, customer_id)
            payment, created = await self.repository.insert_or_reread(payment)
            if created:
                logger.info(f"Recorded payment {remote.id} ({payment.status})")
                return payment

        self._apply(payment, remote, customer_id)
        await self.repository.save()
        logger.info(f"Updated payment {remote.id} ({payment.status})")
        return payment

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: Optional[str] = None,
        notes: Optional[dict[str, Any]] = None,
    ) -> ProcessorOrder:
        """
        Create a one-off order at the processor.

        Raises:
            ValidationError: If the amount is not positive
        """
        if amount <= 0:
            raise ValidationError("amount must be a positive integer in minor units")
        order = await self.processor.create_order(amount, currency, receipt=receipt, notes=notes)
        logger.info(f"Created order {order.id} for {amount} {currency}")
        return order

    async def capture_payment(self, payment_id: str, amount: int, currency: str) -> Payment:
        """
        Capture an authorized payment and record the result.

        Raises:
            ValidationError: If the payment id or amount is missing
        """
        if not payment_id or amount <= 0:
            raise ValidationError("payment id and a positive amount are required")
        remote = await self.processor.capture_payment(payment_id, amount, currency)
        return await self.record_payment(remote)
