from typing import Annotated
from uuid import UUID
from decimal import Decimal
from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query
from pydantic import BaseModel, Field
from starlette import status as http_status

from tables import PaymentStatus, PaymentMethod
from services.payment import PaymentService, PaymentView, InvalidTaxIdError, PaymentUpdateError
from services.repository import PaymentNotFoundError, ExternalReferenceConflictError
from services.gateway import GatewayError
from services.workflow_client import WorkflowStartError
from services.dependencies import get_payment_service


router = APIRouter()


class PaymentBody(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2)
    description: str = Field(min_length=1)
    payer_cpf: str = Field(description='CPF плательщика, 11 цифр')
    payment_method: PaymentMethod


class UpdatePaymentBody(BaseModel):
    amount: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    description: str | None = Field(default=None, min_length=1)
    status: PaymentStatus | None = Field(
        default=None,
        description='Только PAID или FAIL, и только для платежа в статусе PENDING'
    )


@router.post(
    path='',
    status_code=http_status.HTTP_201_CREATED,
    description=
    'Создает платеж<br>'
    'Для CREDIT_CARD запускается workflow, и ответ ждет (недолго) ссылку на оплату в Mercado Pago'
)
async def create_payment(
    body: Annotated[PaymentBody, Body()],
    payments_service: Annotated[PaymentService, Depends(get_payment_service)]
) -> PaymentView:
    try:
        return await payments_service.create(
            amount=body.amount,
            description=body.description,
            payer_tax_id=body.payer_cpf,
            payment_method=body.payment_method
        )
    except InvalidTaxIdError as e:
        raise HTTPException(http_status.HTTP_422_UNPROCESSABLE_ENTITY, str(e))
    except ExternalReferenceConflictError as e:
        raise HTTPException(http_status.HTTP_409_CONFLICT, str(e))
    except (GatewayError, WorkflowStartError) as e:
        raise HTTPException(http_status.HTTP_502_BAD_GATEWAY, str(e))


@router.get(path='')
async def list_payments(
    payments_service: Annotated[PaymentService, Depends(get_payment_service)],
    cpf: Annotated[str | None, Query()] = None,
    payment_method: Annotated[PaymentMethod | None, Query()] = None
) -> list[PaymentView]:
    return await payments_service.list(payer_tax_id=cpf, payment_method=payment_method)


@router.get(path='/{payment_id}')
async def get_payment(
    payment_id: Annotated[UUID, Path()],
    payments_service: Annotated[PaymentService, Depends(get_payment_service)]
) -> PaymentView:
    try:
        return await payments_service.get(payment_id)
    except PaymentNotFoundError as e:
        raise HTTPException(http_status.HTTP_404_NOT_FOUND, str(e))


@router.patch(path='/{payment_id}')
async def update_payment(
    payment_id: Annotated[UUID, Path()],
    body: Annotated[UpdatePaymentBody, Body()],
    payments_service: Annotated[PaymentService, Depends(get_payment_service)]
) -> PaymentView:
    try:
        return await payments_service.update(
            payment_id,
            amount=body.amount,
            description=body.description,
            status=body.status
        )
    except PaymentNotFoundError as e:
        raise HTTPException(http_status.HTTP_404_NOT_FOUND, str(e))
    except PaymentUpdateError as e:
        raise HTTPException(http_status.HTTP_422_UNPROCESSABLE_ENTITY, str(e))
