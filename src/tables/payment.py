from .base import Base
from enum import StrEnum
from datetime import datetime
from uuid import UUID
from decimal import Decimal
from sqlalchemy import Numeric
from sqlalchemy.orm import Mapped, mapped_column


class PaymentStatus(StrEnum):
    PENDING = 'PENDING'
    PAID = 'PAID'
    FAIL = 'FAIL'


class PaymentMethod(StrEnum):
    PIX = 'PIX'
    CREDIT_CARD = 'CREDIT_CARD'


TERMINAL_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.FAIL})


class Payment(Base):
    __tablename__ = 'payment'

    id: Mapped[UUID] = mapped_column(primary_key=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    description: Mapped[str] = mapped_column()
    payer_tax_id: Mapped[str] = mapped_column(index=True)
    payment_method: Mapped[PaymentMethod] = mapped_column(index=True)
    status: Mapped[PaymentStatus] = mapped_column(index=True)
    external_reference: Mapped[str | None] = mapped_column(unique=True, nullable=True)

    provider_preference_id: Mapped[str | None] = mapped_column(nullable=True)
    provider_init_point: Mapped[str | None] = mapped_column(nullable=True)
    provider_sandbox_init_point: Mapped[str | None] = mapped_column(nullable=True)
    provider_payment_id: Mapped[str | None] = mapped_column(nullable=True)
    fail_reason: Mapped[str | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(index=True)
    updated_at: Mapped[datetime] = mapped_column()
