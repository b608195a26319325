from enum import StrEnum
from dataclasses import dataclass

from tables import PaymentStatus


PAYMENT_RESULT_SIGNAL = 'payment_result'


def workflow_id_for(external_reference: str) -> str:
    return f'payment-{external_reference}'


class WorkflowState(StrEnum):
    STARTED = 'STARTED'
    VALIDATING = 'VALIDATING'
    PREFERENCE_CREATING = 'PREFERENCE_CREATING'
    AWAITING_CONFIRMATION = 'AWAITING_CONFIRMATION'
    POLLING_FALLBACK = 'POLLING_FALLBACK'
    FINALIZING = 'FINALIZING'
    DONE = 'DONE'


@dataclass
class PaymentWorkflowInput:
    payment_id: str
    external_reference: str
    timeout_minutes: int = 10


@dataclass
class PaymentResultSignal:
    status: PaymentStatus
    provider_payment_id: str | None = None
    fail_reason: str | None = None


@dataclass
class CorrelationData:
    payment_id: str
    preference_id: str
    init_point: str
    sandbox_init_point: str


@dataclass
class StatusUpdate:
    payment_id: str
    status: PaymentStatus
    fail_reason: str | None = None
    provider_payment_id: str | None = None


@dataclass
class PaymentWorkflowResult:
    status: PaymentStatus
    fail_reason: str | None
    # False, если статус уже был конечным и запись не применилась
    applied: bool
