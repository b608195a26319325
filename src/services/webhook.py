import logging
from typing import Any
from dataclasses import dataclass
from pydantic import BaseModel

from tables import PaymentStatus, PaymentMethod, TERMINAL_STATUSES
from services.repository import PaymentRepository, PaymentNotFoundError
from services.gateway import PaymentGateway, GatewayClientError, map_provider_status, provider_fail_reason
from services.workflow_client import PaymentWorkflowPort, WorkflowSignalError


logger = logging.getLogger('payments-webhook')


@dataclass(frozen=True)
class WebhookNotification:
    provider_payment_id: str
    event_type: str | None = None
    action: str | None = None
    raw_payload: dict[str, Any] | None = None
    request_id: str | None = None


class WebhookResult(BaseModel):
    ok: bool = True
    updated: bool = False
    duplicate: bool = False
    status: PaymentStatus | None = None


def idempotency_key(event_type: str | None, action: str | None, provider_payment_id: str) -> str:
    # action различает payment.created и payment.updated одного и того же платежа
    if action:
        return f'{event_type or "unknown"}:{action}:{provider_payment_id}'
    return f'{event_type or "unknown"}:{provider_payment_id}'


@dataclass(frozen=True)
class ProcessWebhook:
    repository: PaymentRepository
    gateway: PaymentGateway
    workflow: PaymentWorkflowPort | None

    async def execute(self, provider_payment_id: str) -> WebhookResult:
        provider_payment = await self.gateway.get_payment_by_id(provider_payment_id)
        logger.info(
            f'provider payment {provider_payment_id} fetched: status "{provider_payment.status}", '
            f'external reference {provider_payment.external_reference}'
        )

        if not provider_payment.external_reference:
            logger.warning(f'provider payment {provider_payment_id} has no external reference, ignoring')
            return WebhookResult(updated=False)

        payment = await self.repository.find_by_external_reference(provider_payment.external_reference)
        if payment is None:
            raise PaymentNotFoundError(
                f'payment with external reference {provider_payment.external_reference} not found'
            )

        if payment.status in TERMINAL_STATUSES:
            logger.info(f'payment {payment.id} is already {payment.status}, ignoring webhook')
            return WebhookResult(updated=False, status=payment.status)

        new_status = map_provider_status(provider_payment.status)
        if new_status == PaymentStatus.PENDING:
            logger.info(f'payment {payment.id} is still pending on provider side ("{provider_payment.status}")')
            return WebhookResult(updated=False, status=PaymentStatus.PENDING)

        fail_reason = provider_fail_reason(provider_payment.status) if new_status == PaymentStatus.FAIL else None

        if payment.payment_method == PaymentMethod.CREDIT_CARD and self.workflow is not None:
            assert payment.external_reference is not None
            try:
                await self.workflow.signal_payment_result(
                    payment.external_reference,
                    new_status,
                    provider_payment_id=provider_payment_id,
                    fail_reason=fail_reason
                )
                return WebhookResult(updated=True, status=new_status)
            except WorkflowSignalError:
                logger.warning(f'no workflow to signal for payment {payment.id}, updating status directly')

        applied = await self.repository.finalize(
            payment.id,
            new_status,
            fail_reason=fail_reason,
            provider_payment_id=provider_payment_id
        )
        if applied:
            logger.info(f'payment {payment.id} status updated directly to {new_status}')

        return WebhookResult(updated=applied, status=new_status)


@dataclass(frozen=True)
class WebhookService:
    repository: PaymentRepository
    process_webhook: ProcessWebhook

    async def handle_event(self, notification: WebhookNotification) -> WebhookResult:
        """
        Никогда не бросает исключений: Mercado Pago повторяет неуспешные веб-хуки.
        Ключ записывается после обработки; при сбое инфраструктуры не записывается,
        чтобы повторная доставка обработала событие заново
        """
        key = idempotency_key(notification.event_type, notification.action, notification.provider_payment_id)

        try:
            if await self.repository.webhook_event_exists(key):
                logger.info(f'duplicate webhook event "{key}" ignored')
                return WebhookResult(duplicate=True)

            logger.info(f'processing webhook event "{key}" (request {notification.request_id})')
            try:
                result = await self.process_webhook.execute(notification.provider_payment_id)
            except (PaymentNotFoundError, GatewayClientError) as e:
                logger.error(f'webhook event "{key}" can\'t be reconciled: {e}')
                result = WebhookResult(updated=False)

            await self.repository.record_webhook_event(key, notification.raw_payload or {})
            return result
        except Exception:
            logger.exception(f'error processing webhook event "{key}"')
            return WebhookResult(updated=False)
