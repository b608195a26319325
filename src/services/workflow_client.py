import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from temporalio.client import Client
from temporalio.common import WorkflowIDReusePolicy
from temporalio.exceptions import WorkflowAlreadyStartedError
from temporalio.service import RPCError

from tables import PaymentStatus
from settings import settings, temporal_settings
from workflows.credit_card import CreditCardPaymentWorkflow
from workflows.types import PaymentWorkflowInput, PaymentResultSignal, workflow_id_for


logger = logging.getLogger('payments-workflow-client')


class WorkflowStartError(Exception):
    """Temporal не принял запуск: недоступен или workflow выключены"""


class WorkflowSignalError(Exception):
    """Сигнал некуда доставить: workflow не запущен, завершен или недоступен"""


@dataclass(frozen=True)
class WorkflowStart:
    workflow_id: str
    already_running: bool


class PaymentWorkflowPort(ABC):

    @abstractmethod
    async def start_credit_card_workflow(self, payment_id: str, external_reference: str) -> WorkflowStart:
        ...

    @abstractmethod
    async def signal_payment_result(
        self,
        external_reference: str,
        status: PaymentStatus,
        provider_payment_id: str | None = None,
        fail_reason: str | None = None
    ) -> None:
        ...


@dataclass(frozen=True)
class TemporalPaymentWorkflow(PaymentWorkflowPort):
    client: Client
    task_queue: str = temporal_settings.task_queue
    timeout_minutes: int = settings.confirmation_timeout_minutes

    async def start_credit_card_workflow(self, payment_id: str, external_reference: str) -> WorkflowStart:
        workflow_id = workflow_id_for(external_reference)

        try:
            await self.client.start_workflow(
                CreditCardPaymentWorkflow.run,
                PaymentWorkflowInput(
                    payment_id=payment_id,
                    external_reference=external_reference,
                    timeout_minutes=self.timeout_minutes
                ),
                id=workflow_id,
                task_queue=self.task_queue,
                # Повторный запуск с тем же id отклоняется, даже если прошлый уже завершился
                id_reuse_policy=WorkflowIDReusePolicy.REJECT_DUPLICATE
            )
        except WorkflowAlreadyStartedError:
            logger.info(f'workflow {workflow_id} for payment {payment_id} already exists, not starting another one')
            return WorkflowStart(workflow_id=workflow_id, already_running=True)
        except RPCError as e:
            logger.error(f'failed to start workflow {workflow_id} for payment {payment_id}: {e!r}')
            raise WorkflowStartError(f'failed to start workflow {workflow_id}') from e

        logger.info(f'started workflow {workflow_id} for payment {payment_id}')
        return WorkflowStart(workflow_id=workflow_id, already_running=False)

    async def signal_payment_result(
        self,
        external_reference: str,
        status: PaymentStatus,
        provider_payment_id: str | None = None,
        fail_reason: str | None = None
    ) -> None:
        workflow_id = workflow_id_for(external_reference)
        handle = self.client.get_workflow_handle_for(CreditCardPaymentWorkflow.run, workflow_id)

        try:
            await handle.signal(
                CreditCardPaymentWorkflow.payment_result,
                PaymentResultSignal(
                    status=status,
                    provider_payment_id=provider_payment_id,
                    fail_reason=fail_reason
                )
            )
        except RPCError as e:
            logger.warning(f'failed to signal workflow {workflow_id}: {e!r}')
            raise WorkflowSignalError(f'failed to signal workflow {workflow_id}') from e

        logger.info(f'signal {status} sent to workflow {workflow_id}')


async def connect_temporal_client() -> Client:
    logger.info(f'connecting to Temporal at {temporal_settings.address} (namespace: {temporal_settings.namespace})')
    return await Client.connect(temporal_settings.address, namespace=temporal_settings.namespace)
