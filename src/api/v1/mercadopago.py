import logging
from typing import Any, Literal
from fastapi import APIRouter, Request


logger = logging.getLogger('payments-return-pages')

router = APIRouter()

# Страницы, на которые Mercado Pago возвращает плательщика (back_urls).
# Статус платежа они не меняют, источник истины - веб-хук и workflow
_PAGES: dict[str, tuple[str, str]] = {
    'success': ('Payment Successful', 'Your payment was processed successfully.'),
    'failure': ('Payment Failed', 'Your payment could not be processed.'),
    'pending': ('Payment Pending', 'Your payment is being processed.'),
}


@router.get(path='/{outcome}')
async def return_page(outcome: Literal['success', 'failure', 'pending'], request: Request) -> dict[str, Any]:
    query = dict(request.query_params)
    logger.info(f'payer redirected to {outcome} page: {query}')

    title, message = _PAGES[outcome]
    return {'title': title, 'message': message, 'details': query}
