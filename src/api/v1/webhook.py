import logging
from typing import Annotated, Any
from fastapi import APIRouter, Depends, Header, Request

from services.webhook import WebhookService, WebhookNotification
from services.dependencies import get_webhook_service


logger = logging.getLogger('payments-webhook-api')

router = APIRouter()


def _extract_payment_id(query: dict[str, Any], body: dict[str, Any]) -> str | None:
    data = body.get('data')
    payment_id = (
        query.get('data.id')
        or (data.get('id') if isinstance(data, dict) else None)
        or query.get('id')
        or body.get('id')
    )
    return str(payment_id) if payment_id else None


async def _read_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@router.post(
    path='/mercadopago',
    description=
    'Уведомления от Mercado Pago<br>'
    'Всегда отвечает 200, иначе Mercado Pago будет повторять доставку'
)
async def mercadopago_webhook(
    request: Request,
    webhook_service: Annotated[WebhookService, Depends(get_webhook_service)],
    x_request_id: Annotated[str | None, Header()] = None
) -> dict[str, bool]:
    query = dict(request.query_params)
    body = await _read_body(request)

    payment_id = _extract_payment_id(query, body)
    event_type = query.get('type') or body.get('type')
    topic = query.get('topic') or body.get('action') or event_type
    logger.info(f'received Mercado Pago webhook topic={topic} type={event_type} payment_id={payment_id}')

    if topic == 'merchant_order':
        logger.info('ignoring merchant_order notification')
        return {'ok': True}

    if not payment_id:
        logger.warning(f'no payment id in Mercado Pago webhook: query={query} body={body}')
        return {'ok': True}

    await webhook_service.handle_event(WebhookNotification(
        provider_payment_id=payment_id,
        event_type=event_type,
        action=body.get('action'),
        raw_payload=body or query,
        request_id=x_request_id
    ))
    return {'ok': True}
