from typing import Annotated
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel
from starlette import status as http_status

from services.payment import PaymentService, WorkflowStartRejectedError
from services.repository import PaymentNotFoundError
from services.workflow_client import WorkflowStartError
from services.dependencies import get_payment_service


router = APIRouter()


class WorkflowStartView(BaseModel):
    message: str
    payment_id: UUID
    workflow_id: str
    already_running: bool


@router.post(
    path='/{payment_id}/start',
    status_code=http_status.HTTP_201_CREATED,
    description=
    'Запускает workflow оплаты картой вручную<br>'
    'Нужен, если при создании платежа Temporal был недоступен. '
    'Повторный вызов не создает второй workflow'
)
async def start_workflow(
    payment_id: Annotated[UUID, Path()],
    payments_service: Annotated[PaymentService, Depends(get_payment_service)]
) -> WorkflowStartView:
    try:
        start = await payments_service.start_workflow(payment_id)
    except PaymentNotFoundError as e:
        raise HTTPException(http_status.HTTP_404_NOT_FOUND, str(e))
    except WorkflowStartRejectedError as e:
        raise HTTPException(http_status.HTTP_400_BAD_REQUEST, str(e))
    except WorkflowStartError as e:
        raise HTTPException(http_status.HTTP_502_BAD_GATEWAY, str(e))

    return WorkflowStartView(
        message='Workflow is already running' if start.already_running else 'Workflow started successfully',
        payment_id=payment_id,
        workflow_id=start.workflow_id,
        already_running=start.already_running
    )
