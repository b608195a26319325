from uuid import UUID
from temporalio import activity
from temporalio.exceptions import ApplicationError

from tables import PaymentStatus, TERMINAL_STATUSES
from services.repository import PaymentRepository, PaymentNotFoundError
from services.gateway import (
    PaymentGateway, PreferenceRequest, PreferenceResult, GatewayClientError, map_provider_status
)
from workflows.types import CorrelationData, StatusUpdate


PAYMENT_NOT_FOUND = 'PAYMENT_NOT_FOUND'
PAYMENT_NOT_PENDING = 'PAYMENT_NOT_PENDING'
GATEWAY_PREFERENCE_FAILED = 'GATEWAY_PREFERENCE_FAILED'


class PaymentActivities:
    """
    Активности workflow оплаты картой.
    Temporal может выполнить любую из них повторно, поэтому все они идемпотентны
    """

    def __init__(self, repository: PaymentRepository, gateway: PaymentGateway):
        self.repository = repository
        self.gateway = gateway

    @activity.defn
    async def validate_pending(self, payment_id: str) -> None:
        payment = await self.repository.find_by_id(UUID(payment_id))

        if payment is None:
            activity.logger.warning(f'payment {payment_id} not found')
            raise ApplicationError(
                f'payment {payment_id} not found',
                {'payment_id': payment_id},
                type=PAYMENT_NOT_FOUND,
                non_retryable=True
            )

        if payment.status != PaymentStatus.PENDING:
            activity.logger.warning(f'payment {payment_id} is not pending (current: {payment.status})')
            raise ApplicationError(
                f'payment {payment_id} is not PENDING (current: {payment.status})',
                {'payment_id': payment_id, 'current_status': str(payment.status)},
                type=PAYMENT_NOT_PENDING,
                non_retryable=True
            )

        activity.logger.info(f'payment {payment_id} validated as PENDING')

    @activity.defn
    async def create_preference(self, payment_id: str) -> PreferenceResult:
        payment = await self.repository.find_by_id(UUID(payment_id))
        if payment is None:
            raise ApplicationError(
                f'payment {payment_id} not found',
                {'payment_id': payment_id},
                type=PAYMENT_NOT_FOUND,
                non_retryable=True
            )

        if payment.external_reference is None:
            raise ApplicationError(
                f'payment {payment_id} has no external reference',
                {'payment_id': payment_id},
                type=GATEWAY_PREFERENCE_FAILED,
                non_retryable=True
            )

        try:
            result = await self.gateway.create_preference(PreferenceRequest(
                external_reference=payment.external_reference,
                amount=payment.amount,
                description=payment.description,
                payer_tax_id=payment.payer_tax_id
            ))
        except GatewayClientError as e:
            # Отказ шлюза (настройки магазина, данные плательщика) повтором не исправить
            activity.logger.warning(f'gateway rejected preference for payment {payment_id}: {e}')
            raise ApplicationError(
                f'failed to create preference for payment {payment_id}',
                {'payment_id': payment_id, 'status_code': e.status_code},
                type=GATEWAY_PREFERENCE_FAILED,
                non_retryable=True
            ) from e

        activity.logger.info(f'preference {result.preference_id} created for payment {payment_id}')
        return result

    @activity.defn
    async def save_correlation_data(self, data: CorrelationData) -> None:
        try:
            await self.repository.update(
                UUID(data.payment_id),
                provider_preference_id=data.preference_id,
                provider_init_point=data.init_point,
                provider_sandbox_init_point=data.sandbox_init_point
            )
        except PaymentNotFoundError:
            activity.logger.info(f'payment {data.payment_id} disappeared, correlation data ignored')
            return

        activity.logger.info(f'correlation data saved for payment {data.payment_id}')

    @activity.defn
    async def update_status(self, update: StatusUpdate) -> bool:
        applied = await self.repository.finalize(
            UUID(update.payment_id),
            update.status,
            fail_reason=update.fail_reason,
            provider_payment_id=update.provider_payment_id
        )

        if applied:
            activity.logger.info(
                f'payment {update.payment_id} status updated to {update.status} '
                f'(reason: {update.fail_reason or "N/A"})'
            )
        else:
            activity.logger.info(f'payment {update.payment_id} is missing or already final, {update.status} ignored')

        return applied

    @activity.defn
    async def poll_status(self, payment_id: str) -> PaymentStatus | None:
        payment = await self.repository.find_by_id(UUID(payment_id))
        if payment is None or payment.provider_preference_id is None:
            activity.logger.info(f'can\'t poll payment {payment_id}: payment or preference id missing')
            return None

        if payment.status in TERMINAL_STATUSES:
            return payment.status

        assert payment.external_reference is not None
        provider_payment = await self.gateway.search_payment_by_external_reference(payment.external_reference)
        if provider_payment is None:
            return None

        status = map_provider_status(provider_payment.status)
        activity.logger.info(f'polled payment {payment_id}: provider status "{provider_payment.status}" -> {status}')

        return None if status == PaymentStatus.PENDING else status
