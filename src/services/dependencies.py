from typing import Annotated
from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

import db.postgres
from services.repository import PaymentRepository
from services.gateway import PaymentGateway
from services.workflow_client import PaymentWorkflowPort
from services.payment import PaymentService
from services.webhook import WebhookService, ProcessWebhook


# Заполняются в lifespan приложения
gateway: PaymentGateway | None = None
payment_workflow: PaymentWorkflowPort | None = None


def get_payment_repository(
    session_maker: Annotated[async_sessionmaker[AsyncSession], Depends(db.postgres.get_session_maker)]
) -> PaymentRepository:
    return PaymentRepository(session_maker=session_maker)


def get_gateway() -> PaymentGateway:
    assert gateway is not None
    return gateway


def get_payment_workflow() -> PaymentWorkflowPort | None:
    return payment_workflow


def get_payment_service(
    repository: Annotated[PaymentRepository, Depends(get_payment_repository)],
    gateway: Annotated[PaymentGateway, Depends(get_gateway)],
    workflow: Annotated[PaymentWorkflowPort | None, Depends(get_payment_workflow)]
) -> PaymentService:
    return PaymentService(repository=repository, gateway=gateway, workflow=workflow)


def get_webhook_service(
    repository: Annotated[PaymentRepository, Depends(get_payment_repository)],
    gateway: Annotated[PaymentGateway, Depends(get_gateway)],
    workflow: Annotated[PaymentWorkflowPort | None, Depends(get_payment_workflow)]
) -> WebhookService:
    return WebhookService(
        repository=repository,
        process_webhook=ProcessWebhook(repository=repository, gateway=gateway, workflow=workflow)
    )
