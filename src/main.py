import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

import db.postgres
import services.dependencies
from api.v1 import payment, webhook, mercadopago, temporal
from services.gateway import create_gateway, MercadoPagoGateway
from services.workflow_client import TemporalPaymentWorkflow, connect_temporal_client
from settings import settings


logger = logging.getLogger('payments-api')

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(name)s %(levelname)s: %(message)s'
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    gateway = create_gateway(mock=settings.gateway_mock)
    services.dependencies.gateway = gateway

    if settings.temporal_enabled:
        client = await connect_temporal_client()
        services.dependencies.payment_workflow = TemporalPaymentWorkflow(client=client)
    else:
        logger.warning('Temporal is disabled, CREDIT_CARD preferences are created inline')

    yield

    await db.postgres.engine.dispose()
    if isinstance(gateway, MercadoPagoGateway):
        await gateway.client.aclose()


app = FastAPI(
    title='Payments',
    lifespan=lifespan,
    docs_url='/api/openapi',
    openapi_url='/api/openapi.json',
    default_response_class=ORJSONResponse
)

app.include_router(payment.router, prefix='/api/v1/payments', tags=['payments'])
app.include_router(webhook.router, prefix='/api/v1/webhooks', tags=['webhooks'])
app.include_router(mercadopago.router, prefix='/api/v1/mercadopago', tags=['mercadopago'])
app.include_router(temporal.router, prefix='/api/v1/temporal/payments', tags=['temporal'])


@app.get('/health')
async def health() -> dict[str, str]:
    return {'status': 'ok'}
