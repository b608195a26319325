import pytest
from uuid import uuid4
from typing import Awaitable, Callable
from temporalio import activity
from temporalio.client import WorkflowHandle
from temporalio.exceptions import ApplicationError
from temporalio.testing import WorkflowEnvironment
from temporalio.worker import Worker

from tables import PaymentStatus
from services.gateway import PreferenceResult
from services.activities import PAYMENT_NOT_PENDING, GATEWAY_PREFERENCE_FAILED
from workflows.credit_card import CreditCardPaymentWorkflow, POLL_ROUNDS
from workflows.types import (
    PaymentWorkflowInput, PaymentWorkflowResult, PaymentResultSignal, CorrelationData, StatusUpdate, workflow_id_for
)


class MockActivities:
    """Активности с теми же именами, что у PaymentActivities, но без базы и шлюза"""

    def __init__(
        self,
        poll_results: list[PaymentStatus | None] | None = None,
        validation_fails: bool = False,
        preference_fails: bool = False
    ):
        self.poll_results = poll_results or []
        self.validation_fails = validation_fails
        self.preference_fails = preference_fails
        self.on_poll: Callable[[], Awaitable[None]] | None = None

        self.poll_calls = 0
        self.preference_calls = 0
        self.correlations: list[CorrelationData] = []
        self.updates: list[StatusUpdate] = []

    @activity.defn(name='validate_pending')
    async def validate_pending(self, payment_id: str) -> None:
        if self.validation_fails:
            raise ApplicationError(f'payment {payment_id} is not PENDING', type=PAYMENT_NOT_PENDING, non_retryable=True)

    @activity.defn(name='create_preference')
    async def create_preference(self, payment_id: str) -> PreferenceResult:
        self.preference_calls += 1
        if self.preference_fails:
            raise ApplicationError('gateway rejected preference', type=GATEWAY_PREFERENCE_FAILED, non_retryable=True)
        return PreferenceResult(
            preference_id=f'pref_{payment_id}',
            init_point=f'https://mp/init/{payment_id}',
            sandbox_init_point=f'https://mp/sandbox/{payment_id}'
        )

    @activity.defn(name='save_correlation_data')
    async def save_correlation_data(self, data: CorrelationData) -> None:
        self.correlations.append(data)

    @activity.defn(name='update_status')
    async def update_status(self, update: StatusUpdate) -> bool:
        self.updates.append(update)
        return True

    @activity.defn(name='poll_status')
    async def poll_status(self, payment_id: str) -> PaymentStatus | None:
        self.poll_calls += 1
        if self.on_poll is not None:
            await self.on_poll()
        return self.poll_results.pop(0) if self.poll_results else None

    def all(self):
        return [
            self.validate_pending,
            self.create_preference,
            self.save_correlation_data,
            self.update_status,
            self.poll_status
        ]


@pytest.fixture
async def env():
    async with await WorkflowEnvironment.start_time_skipping() as env:
        yield env


async def start(env: WorkflowEnvironment, task_queue: str) -> WorkflowHandle[CreditCardPaymentWorkflow, PaymentWorkflowResult]:
    external_reference = str(uuid4())
    return await env.client.start_workflow(
        CreditCardPaymentWorkflow.run,
        PaymentWorkflowInput(payment_id=external_reference, external_reference=external_reference, timeout_minutes=10),
        id=workflow_id_for(external_reference),
        task_queue=task_queue
    )


async def run_workflow(env: WorkflowEnvironment, mocks: MockActivities) -> PaymentWorkflowResult:
    task_queue = f'tests-{uuid4()}'
    async with Worker(env.client, task_queue=task_queue, workflows=[CreditCardPaymentWorkflow], activities=mocks.all()):
        handle = await start(env, task_queue)
        return await handle.result()


async def test_signal_before_timeout(env: WorkflowEnvironment):
    mocks = MockActivities()
    task_queue = f'tests-{uuid4()}'

    async with Worker(env.client, task_queue=task_queue, workflows=[CreditCardPaymentWorkflow], activities=mocks.all()):
        handle = await start(env, task_queue)
        await handle.signal(
            CreditCardPaymentWorkflow.payment_result,
            PaymentResultSignal(status=PaymentStatus.PAID, provider_payment_id='mp-1')
        )
        result = await handle.result()

    assert result.status == PaymentStatus.PAID
    assert result.fail_reason is None
    assert mocks.poll_calls == 0
    assert len(mocks.correlations) == 1
    assert mocks.updates == [StatusUpdate(
        payment_id=mocks.updates[0].payment_id,
        status=PaymentStatus.PAID,
        fail_reason=None,
        provider_payment_id='mp-1'
    )]


async def test_first_terminal_signal_wins(env: WorkflowEnvironment):
    mocks = MockActivities()
    task_queue = f'tests-{uuid4()}'

    async with Worker(env.client, task_queue=task_queue, workflows=[CreditCardPaymentWorkflow], activities=mocks.all()):
        handle = await start(env, task_queue)
        await handle.signal(CreditCardPaymentWorkflow.payment_result, PaymentResultSignal(status=PaymentStatus.PENDING))
        await handle.signal(CreditCardPaymentWorkflow.payment_result, PaymentResultSignal(status=PaymentStatus.FAIL))
        await handle.signal(CreditCardPaymentWorkflow.payment_result, PaymentResultSignal(status=PaymentStatus.PAID))
        result = await handle.result()

    assert result.status == PaymentStatus.FAIL
    assert result.fail_reason == 'unknown_failure'
    assert len(mocks.updates) == 1


async def test_timeout_then_poll_round_two_paid(env: WorkflowEnvironment):
    mocks = MockActivities(poll_results=[None, PaymentStatus.PAID, PaymentStatus.FAIL])

    result = await run_workflow(env, mocks)

    assert result.status == PaymentStatus.PAID
    assert result.fail_reason is None
    # Третий раунд опроса не выполняется
    assert mocks.poll_calls == 2
    assert [u.status for u in mocks.updates] == [PaymentStatus.PAID]


async def test_polled_fail(env: WorkflowEnvironment):
    mocks = MockActivities(poll_results=[PaymentStatus.FAIL])

    result = await run_workflow(env, mocks)

    assert result.status == PaymentStatus.FAIL
    assert result.fail_reason == 'provider_status_polled'
    assert mocks.poll_calls == 1


async def test_polling_exhausted(env: WorkflowEnvironment):
    mocks = MockActivities()

    result = await run_workflow(env, mocks)

    assert result.status == PaymentStatus.FAIL
    assert result.fail_reason == 'timeout_waiting_confirmation'
    assert mocks.poll_calls == POLL_ROUNDS
    assert len(mocks.updates) == 1


async def test_signal_during_polling_wins(env: WorkflowEnvironment):
    # Опрос вернет FAIL, но пока он шел, пришел сигнал PAID
    mocks = MockActivities(poll_results=[PaymentStatus.FAIL])
    task_queue = f'tests-{uuid4()}'

    async with Worker(env.client, task_queue=task_queue, workflows=[CreditCardPaymentWorkflow], activities=mocks.all()):
        handle = await start(env, task_queue)

        async def signal_paid():
            await handle.signal(
                CreditCardPaymentWorkflow.payment_result,
                PaymentResultSignal(status=PaymentStatus.PAID, provider_payment_id='mp-2')
            )

        mocks.on_poll = signal_paid
        result = await handle.result()

    assert result.status == PaymentStatus.PAID
    assert mocks.poll_calls == 1
    assert mocks.updates[0].provider_payment_id == 'mp-2'


async def test_validation_failure(env: WorkflowEnvironment):
    mocks = MockActivities(validation_fails=True)

    result = await run_workflow(env, mocks)

    assert result.status == PaymentStatus.FAIL
    assert result.fail_reason == 'payment_not_pending'
    assert mocks.preference_calls == 0
    assert mocks.poll_calls == 0


async def test_preference_failure(env: WorkflowEnvironment):
    mocks = MockActivities(preference_fails=True)

    result = await run_workflow(env, mocks)

    assert result.status == PaymentStatus.FAIL
    assert result.fail_reason == 'preference_creation_failed'
    assert mocks.correlations == []
    assert mocks.poll_calls == 0
