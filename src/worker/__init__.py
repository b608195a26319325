import logging
from temporalio.worker import Worker

import db.postgres
from services.activities import PaymentActivities
from services.gateway import create_gateway, MercadoPagoGateway
from services.repository import PaymentRepository
from services.workflow_client import connect_temporal_client
from workflows.credit_card import CreditCardPaymentWorkflow
from settings import settings, temporal_settings


logger = logging.getLogger('payments-worker')


async def run():
    client = await connect_temporal_client()
    gateway = create_gateway(mock=settings.gateway_mock)
    activities = PaymentActivities(
        repository=PaymentRepository(session_maker=db.postgres.session_maker),
        gateway=gateway
    )

    worker = Worker(
        client,
        task_queue=temporal_settings.task_queue,
        workflows=[CreditCardPaymentWorkflow],
        activities=[
            activities.validate_pending,
            activities.create_preference,
            activities.save_correlation_data,
            activities.update_status,
            activities.poll_status
        ]
    )

    logger.info(f'worker is started, task queue "{temporal_settings.task_queue}", mock gateway: {settings.gateway_mock}')
    try:
        await worker.run()
    finally:
        await db.postgres.engine.dispose()
        if isinstance(gateway, MercadoPagoGateway):
            await gateway.client.aclose()
