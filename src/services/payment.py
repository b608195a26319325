import anyio
import logging
from uuid import UUID, uuid4
from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass, field
from pydantic import BaseModel, ConfigDict

import tables
from tables import PaymentStatus, PaymentMethod, TERMINAL_STATUSES
from settings import settings, Settings
from services.cpf import is_valid_cpf
from services.repository import PaymentRepository, PaymentFilter, PaymentNotFoundError
from services.gateway import PaymentGateway, PreferenceRequest, GatewayError
from services.workflow_client import PaymentWorkflowPort, WorkflowStart, WorkflowStartError


logger = logging.getLogger('payments-service')


class InvalidTaxIdError(Exception):
    ...


class PaymentUpdateError(Exception):
    ...


class WorkflowStartRejectedError(Exception):
    ...


class PaymentView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    amount: Decimal
    description: str
    payer_tax_id: str
    payment_method: PaymentMethod
    status: PaymentStatus
    external_reference: str | None = None
    provider_preference_id: str | None = None
    provider_init_point: str | None = None
    provider_sandbox_init_point: str | None = None
    provider_payment_id: str | None = None
    fail_reason: str | None = None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class PaymentService:
    repository: PaymentRepository
    gateway: PaymentGateway
    # None, если Temporal выключен
    workflow: PaymentWorkflowPort | None
    config: Settings = field(default_factory=lambda: settings)

    async def create(
        self,
        amount: Decimal,
        description: str,
        payer_tax_id: str,
        payment_method: PaymentMethod
    ) -> PaymentView:
        if not is_valid_cpf(payer_tax_id):
            logger.warning('payment creation rejected: invalid CPF')
            raise InvalidTaxIdError('Invalid CPF')

        logger.info(f'creating {payment_method} payment, amount {amount}')

        # external_reference назначается до любого обращения к шлюзу и больше не меняется,
        # по нему веб-хук находит платеж любого типа
        payment_id = uuid4()
        payment = await self.repository.create(
            amount=amount,
            description=description,
            payer_tax_id=payer_tax_id,
            payment_method=payment_method,
            payment_id=payment_id,
            external_reference=str(payment_id)
        )
        assert payment.external_reference is not None

        if payment_method == PaymentMethod.PIX:
            logger.info(f'PIX payment {payment.id} created')
            return PaymentView.model_validate(payment)

        if self.workflow is None:
            return PaymentView.model_validate(await self._create_preference_inline(payment))

        # Если запуск не удался, платеж остается PENDING, workflow можно запустить вручную
        start = await self.workflow.start_credit_card_workflow(str(payment.id), payment.external_reference)
        logger.info(f'workflow {start.workflow_id} started for payment {payment.id}')

        found = await self._wait_for_init_point(payment.id)
        logger.info(f'CREDIT_CARD payment {payment.id} created, init point ready: {found.provider_init_point is not None}')

        return PaymentView.model_validate(found)

    async def _wait_for_init_point(self, payment_id: UUID) -> tables.Payment:
        # Не гарантия: если workflow не успел, клиент получит платеж без init_point
        payment = await self.repository.find_by_id(payment_id)
        assert payment is not None

        with anyio.move_on_after(self.config.creation_wait_timeout):
            while payment.provider_init_point is None and payment.status not in TERMINAL_STATUSES:
                await anyio.sleep(self.config.creation_wait_poll_interval)
                payment = await self.repository.find_by_id(payment_id) or payment

        return payment

    async def _create_preference_inline(self, payment: tables.Payment) -> tables.Payment:
        assert payment.external_reference is not None
        logger.info(f'Temporal disabled, creating preference for payment {payment.id} directly')

        try:
            preference = await self.gateway.create_preference(PreferenceRequest(
                external_reference=payment.external_reference,
                amount=payment.amount,
                description=payment.description,
                payer_tax_id=payment.payer_tax_id
            ))
        except GatewayError:
            await self.repository.finalize(payment.id, PaymentStatus.FAIL, fail_reason='preference_creation_failed')
            raise

        return await self.repository.update(
            payment.id,
            provider_preference_id=preference.preference_id,
            provider_init_point=preference.init_point,
            provider_sandbox_init_point=preference.sandbox_init_point
        )

    async def get(self, payment_id: UUID) -> PaymentView:
        payment = await self.repository.find_by_id(payment_id)
        if payment is None:
            raise PaymentNotFoundError(f'Payment with ID {payment_id} not found')
        return PaymentView.model_validate(payment)

    async def list(self, payer_tax_id: str | None = None, payment_method: PaymentMethod | None = None) -> list[PaymentView]:
        payments = await self.repository.list(PaymentFilter(payer_tax_id=payer_tax_id, payment_method=payment_method))
        logger.info(f'listed {len(payments)} payments')
        return [PaymentView.model_validate(payment) for payment in payments]

    async def update(
        self,
        payment_id: UUID,
        amount: Decimal | None = None,
        description: str | None = None,
        status: PaymentStatus | None = None
    ) -> PaymentView:
        if amount is None and description is None and status is None:
            raise PaymentUpdateError('No fields to update provided')

        existing = await self.repository.find_by_id(payment_id)
        if existing is None:
            raise PaymentNotFoundError(f'Payment with ID {payment_id} not found')

        if status is not None:
            if status not in TERMINAL_STATUSES:
                raise PaymentUpdateError('Status can only be updated to PAID or FAIL')
            if existing.status in TERMINAL_STATUSES:
                raise PaymentUpdateError(f'Cannot update status of a {existing.status} payment')

        values = {name: value for name, value in (('amount', amount), ('description', description)) if value is not None}

        if status is not None:
            # Поля пишутся вместе со статусом, проигравший гонку запрос не меняет ничего
            fail_reason = 'manual_update' if status == PaymentStatus.FAIL else None
            if not await self.repository.finalize(payment_id, status, fail_reason=fail_reason, **values):
                raise PaymentUpdateError('Payment status was changed concurrently')
        elif values:
            await self.repository.update(payment_id, **values)

        return await self.get(payment_id)

    async def start_workflow(self, payment_id: UUID) -> WorkflowStart:
        """Ручной запуск workflow для CREDIT_CARD платежа, оставшегося без него"""
        if self.workflow is None:
            raise WorkflowStartError('Temporal workflows are disabled')

        payment = await self.repository.find_by_id(payment_id)
        if payment is None:
            raise PaymentNotFoundError(f'Payment with ID {payment_id} not found')
        if payment.external_reference is None:
            raise WorkflowStartRejectedError('Payment has no external reference')
        if payment.payment_method != PaymentMethod.CREDIT_CARD:
            raise WorkflowStartRejectedError(f'Workflows are only run for CREDIT_CARD payments, not {payment.payment_method}')
        if payment.status in TERMINAL_STATUSES:
            raise WorkflowStartRejectedError(f'Payment is already {payment.status}')

        start = await self.workflow.start_credit_card_workflow(str(payment.id), payment.external_reference)
        logger.info(
            f'manual start of workflow {start.workflow_id} for payment {payment.id}, '
            f'already running: {start.already_running}'
        )
        return start
