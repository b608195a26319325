"""
Workflow оплаты картой: один экземпляр на платеж, id = payment-<external_reference>.

Результат приходит сигналом от веб-хука; если сигнала нет за timeout_minutes,
статус опрашивается у шлюза. Конечный статус записывается один раз, в _finalize
"""
import asyncio
from datetime import timedelta
from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError

with workflow.unsafe.imports_passed_through():
    from tables import PaymentStatus, TERMINAL_STATUSES
    from services.activities import PaymentActivities
    from workflows.types import (
        PAYMENT_RESULT_SIGNAL,
        WorkflowState,
        PaymentWorkflowInput,
        PaymentWorkflowResult,
        PaymentResultSignal,
        CorrelationData,
        StatusUpdate,
    )


ACTIVITY_TIMEOUT = timedelta(minutes=2)
ACTIVITY_RETRY_POLICY = RetryPolicy(
    initial_interval=timedelta(seconds=1),
    backoff_coefficient=2.0,
    maximum_interval=timedelta(minutes=1),
    maximum_attempts=3,
)

POLL_ROUNDS = 3
POLL_INTERVAL = timedelta(minutes=1)


@workflow.defn
class CreditCardPaymentWorkflow:

    def __init__(self) -> None:
        self._state = WorkflowState.STARTED
        self._result: PaymentResultSignal | None = None

    @workflow.signal(name=PAYMENT_RESULT_SIGNAL)
    def payment_result(self, signal: PaymentResultSignal) -> None:
        # Обработчик только запоминает результат, активности вызывает run
        if signal.status not in TERMINAL_STATUSES:
            workflow.logger.info(f'ignoring non-terminal signal {signal.status}')
            return
        if self._result is not None:
            workflow.logger.info(f'result {self._result.status} already decided, signal {signal.status} ignored')
            return

        workflow.logger.info(
            f'received payment result {signal.status} '
            f'(provider payment {signal.provider_payment_id or "N/A"})'
        )
        self._result = signal

    @workflow.query
    def state(self) -> WorkflowState:
        return self._state

    @workflow.run
    async def run(self, input: PaymentWorkflowInput) -> PaymentWorkflowResult:
        workflow.logger.info(f'starting credit card payment workflow for payment {input.payment_id}')

        self._state = WorkflowState.VALIDATING
        try:
            await workflow.execute_activity_method(
                PaymentActivities.validate_pending,
                input.payment_id,
                start_to_close_timeout=ACTIVITY_TIMEOUT,
                retry_policy=ACTIVITY_RETRY_POLICY,
            )
        except ActivityError as e:
            workflow.logger.error(f'payment {input.payment_id} validation failed: {e.cause or e}')
            return await self._finalize(input, PaymentStatus.FAIL, 'payment_not_pending')

        self._state = WorkflowState.PREFERENCE_CREATING
        try:
            preference = await workflow.execute_activity_method(
                PaymentActivities.create_preference,
                input.payment_id,
                start_to_close_timeout=ACTIVITY_TIMEOUT,
                retry_policy=ACTIVITY_RETRY_POLICY,
            )
            await workflow.execute_activity_method(
                PaymentActivities.save_correlation_data,
                CorrelationData(
                    payment_id=input.payment_id,
                    preference_id=preference.preference_id,
                    init_point=preference.init_point,
                    sandbox_init_point=preference.sandbox_init_point,
                ),
                start_to_close_timeout=ACTIVITY_TIMEOUT,
                retry_policy=ACTIVITY_RETRY_POLICY,
            )
        except ActivityError as e:
            workflow.logger.error(f'preference creation failed for payment {input.payment_id}: {e.cause or e}')
            return await self._finalize(input, PaymentStatus.FAIL, 'preference_creation_failed')

        self._state = WorkflowState.AWAITING_CONFIRMATION
        workflow.logger.info(f'waiting {input.timeout_minutes} minutes for payment result signal')
        try:
            await workflow.wait_condition(
                lambda: self._result is not None,
                timeout=timedelta(minutes=input.timeout_minutes),
            )
        except asyncio.TimeoutError:
            workflow.logger.warning('signal timeout reached, polling the gateway')
            self._state = WorkflowState.POLLING_FALLBACK
            await self._poll(input)

        if self._result is None:
            workflow.logger.warning('polling exhausted without final status')
            return await self._finalize(input, PaymentStatus.FAIL, 'timeout_waiting_confirmation')

        fail_reason = self._result.fail_reason
        if self._result.status == PaymentStatus.FAIL and fail_reason is None:
            fail_reason = 'unknown_failure'

        return await self._finalize(
            input,
            self._result.status,
            fail_reason,
            provider_payment_id=self._result.provider_payment_id,
        )

    async def _poll(self, input: PaymentWorkflowInput) -> None:
        for attempt in range(1, POLL_ROUNDS + 1):
            if self._result is not None:
                return

            try:
                polled = await workflow.execute_activity_method(
                    PaymentActivities.poll_status,
                    input.payment_id,
                    start_to_close_timeout=ACTIVITY_TIMEOUT,
                    retry_policy=ACTIVITY_RETRY_POLICY,
                )
            except ActivityError as e:
                workflow.logger.error(f'polling attempt {attempt} failed: {e.cause or e}')
                polled = None

            if polled is not None and polled != PaymentStatus.PENDING:
                # Сигнал, пришедший пока шел опрос, важнее результата опроса
                if self._result is None:
                    workflow.logger.info(f'payment status {polled} retrieved by polling on attempt {attempt}')
                    self._result = PaymentResultSignal(
                        status=polled,
                        fail_reason='provider_status_polled' if polled == PaymentStatus.FAIL else None,
                    )
                return

            workflow.logger.info(f'payment still pending after polling attempt {attempt}')
            try:
                await workflow.wait_condition(lambda: self._result is not None, timeout=POLL_INTERVAL)
            except asyncio.TimeoutError:
                pass

    async def _finalize(
        self,
        input: PaymentWorkflowInput,
        status: PaymentStatus,
        fail_reason: str | None,
        provider_payment_id: str | None = None,
    ) -> PaymentWorkflowResult:
        self._state = WorkflowState.FINALIZING
        applied = await workflow.execute_activity_method(
            PaymentActivities.update_status,
            StatusUpdate(
                payment_id=input.payment_id,
                status=status,
                fail_reason=fail_reason,
                provider_payment_id=provider_payment_id,
            ),
            start_to_close_timeout=ACTIVITY_TIMEOUT,
            retry_policy=ACTIVITY_RETRY_POLICY,
        )
        self._state = WorkflowState.DONE

        workflow.logger.info(
            f'workflow completed for payment {input.payment_id}: '
            f'status={status} reason={fail_reason or "N/A"} applied={applied}'
        )
        return PaymentWorkflowResult(status=status, fail_reason=fail_reason, applied=applied)
