import logging
from uuid import UUID, uuid4
from decimal import Decimal
from datetime import datetime, timezone
from typing import Any
from dataclasses import dataclass
from sqlalchemy import select, update, insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

import tables
from tables import PaymentStatus, PaymentMethod, TERMINAL_STATUSES


logger = logging.getLogger('payments-repository')

# external_reference и status меняются только через create/finalize
_IMMUTABLE_FIELDS = frozenset({'id', 'status', 'external_reference', 'created_at'})


class PaymentNotFoundError(Exception):
    ...


class ExternalReferenceConflictError(Exception):
    ...


@dataclass(frozen=True)
class PaymentFilter:
    payer_tax_id: str | None = None
    payment_method: PaymentMethod | None = None


@dataclass(frozen=True)
class PaymentRepository:
    session_maker: async_sessionmaker[AsyncSession]

    async def create(
        self,
        amount: Decimal,
        description: str,
        payer_tax_id: str,
        payment_method: PaymentMethod,
        payment_id: UUID | None = None,
        external_reference: str | None = None
    ) -> tables.Payment:
        now = datetime.now(timezone.utc)
        payment = tables.Payment(
            id=payment_id or uuid4(),
            amount=amount,
            description=description,
            payer_tax_id=payer_tax_id,
            payment_method=payment_method,
            status=PaymentStatus.PENDING,
            external_reference=external_reference,
            created_at=now,
            updated_at=now
        )

        try:
            async with self.session_maker() as session, session.begin():
                session.add(payment)
                await session.flush()
                session.expunge(payment)
        except IntegrityError as e:
            raise ExternalReferenceConflictError(f'external reference {external_reference} already exists') from e

        return payment

    async def update(self, payment_id: UUID, **values: Any) -> tables.Payment:
        forbidden = _IMMUTABLE_FIELDS.intersection(values)
        if forbidden:
            raise ValueError(f'fields {sorted(forbidden)} can\'t be changed with update()')

        async with self.session_maker() as session, session.begin():
            payment = await session.get(tables.Payment, payment_id)
            if payment is None:
                raise PaymentNotFoundError(f'payment {payment_id} not found')

            for name, value in values.items():
                setattr(payment, name, value)
            payment.updated_at = datetime.now(timezone.utc)

            await session.flush()
            session.expunge(payment)

        return payment

    async def finalize(
        self,
        payment_id: UUID,
        status: PaymentStatus,
        fail_reason: str | None = None,
        provider_payment_id: str | None = None,
        **fields: Any
    ) -> bool:
        """
        Переводит платеж в конечный статус, только если он все еще PENDING.
        fields (amount, description) пишутся тем же UPDATE и только вместе со статусом.
        Возвращает False, если платежа нет или он уже в конечном статусе
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f'status {status} is not terminal')

        forbidden = _IMMUTABLE_FIELDS.intersection(fields)
        if forbidden:
            raise ValueError(f'fields {sorted(forbidden)} can\'t be changed with finalize()')

        values: dict[Any, Any] = {
            tables.Payment.status: status,
            tables.Payment.fail_reason: fail_reason if status == PaymentStatus.FAIL else None,
            tables.Payment.updated_at: datetime.now(timezone.utc)
        }
        if provider_payment_id is not None:
            values[tables.Payment.provider_payment_id] = provider_payment_id
        for name, value in fields.items():
            values[getattr(tables.Payment, name)] = value

        async with self.session_maker() as session, session.begin():
            result = await session.execute(
                update(tables.Payment)
                .where(tables.Payment.id == payment_id)
                .where(tables.Payment.status == PaymentStatus.PENDING)
                .values(values)
            )

        if result.rowcount != 1:
            logger.info(f'payment {payment_id} was not finalized as {status}: missing or already final')
            return False

        return True

    async def find_by_id(self, payment_id: UUID) -> tables.Payment | None:
        async with self.session_maker() as session:
            payment = await session.get(tables.Payment, payment_id)
            if payment is not None:
                session.expunge(payment)
            return payment

    async def find_by_external_reference(self, external_reference: str) -> tables.Payment | None:
        async with self.session_maker() as session:
            payment = await session.scalar(
                select(tables.Payment)
                .where(tables.Payment.external_reference == external_reference)
            )
            if payment is not None:
                session.expunge(payment)
            return payment

    async def list(self, filter: PaymentFilter) -> list[tables.Payment]:
        query = select(tables.Payment).order_by(tables.Payment.created_at.desc())
        if filter.payer_tax_id:
            query = query.where(tables.Payment.payer_tax_id == filter.payer_tax_id)
        if filter.payment_method:
            query = query.where(tables.Payment.payment_method == filter.payment_method)

        async with self.session_maker() as session:
            payments = list((await session.execute(query)).scalars())
            session.expunge_all()
            return payments

    async def webhook_event_exists(self, idempotency_key: str) -> bool:
        async with self.session_maker() as session:
            found = await session.scalar(
                select(tables.WebhookEvent.id)
                .where(tables.WebhookEvent.idempotency_key == idempotency_key)
            )
            return found is not None

    async def record_webhook_event(self, idempotency_key: str, payload: dict[str, Any]) -> bool:
        # Уникальный индекс по ключу - единственная защита от параллельной повторной доставки
        try:
            async with self.session_maker() as session, session.begin():
                await session.execute(insert(tables.WebhookEvent).values({
                    tables.WebhookEvent.id: uuid4(),
                    tables.WebhookEvent.idempotency_key: idempotency_key,
                    tables.WebhookEvent.payload: payload,
                    tables.WebhookEvent.received_at: datetime.now(timezone.utc)
                }))
        except IntegrityError:
            logger.info(f'webhook event "{idempotency_key}" is already recorded')
            return False

        return True
