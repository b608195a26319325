import pytest
from uuid import uuid4
from decimal import Decimal
from temporalio.testing import ActivityEnvironment
from temporalio.exceptions import ApplicationError

import tables
from tables import PaymentStatus, PaymentMethod
from services.repository import PaymentRepository
from services.gateway import FakePaymentGateway, GatewayClientError, GatewayUnavailableError
from services.activities import (
    PaymentActivities, PAYMENT_NOT_FOUND, PAYMENT_NOT_PENDING, GATEWAY_PREFERENCE_FAILED
)
from workflows.types import CorrelationData, StatusUpdate


@pytest.fixture
def activities(repository: PaymentRepository, gateway: FakePaymentGateway) -> PaymentActivities:
    return PaymentActivities(repository=repository, gateway=gateway)


@pytest.fixture
def env() -> ActivityEnvironment:
    return ActivityEnvironment()


async def create_payment(repository: PaymentRepository) -> tables.Payment:
    payment_id = uuid4()
    return await repository.create(
        amount=Decimal('200.00'),
        description='Test',
        payer_tax_id='11144477735',
        payment_method=PaymentMethod.CREDIT_CARD,
        payment_id=payment_id,
        external_reference=str(payment_id)
    )


async def test_validate_pending(env: ActivityEnvironment, activities: PaymentActivities, repository: PaymentRepository):
    payment = await create_payment(repository)

    await env.run(activities.validate_pending, str(payment.id))


async def test_validate_missing_payment(env: ActivityEnvironment, activities: PaymentActivities):
    with pytest.raises(ApplicationError) as e:
        await env.run(activities.validate_pending, str(uuid4()))

    assert e.value.type == PAYMENT_NOT_FOUND
    assert e.value.non_retryable


async def test_validate_not_pending(env: ActivityEnvironment, activities: PaymentActivities, repository: PaymentRepository):
    payment = await create_payment(repository)
    await repository.finalize(payment.id, PaymentStatus.PAID)

    with pytest.raises(ApplicationError) as e:
        await env.run(activities.validate_pending, str(payment.id))

    assert e.value.type == PAYMENT_NOT_PENDING
    assert e.value.non_retryable


async def test_create_preference(
    env: ActivityEnvironment,
    activities: PaymentActivities,
    repository: PaymentRepository,
    gateway: FakePaymentGateway
):
    payment = await create_payment(repository)

    result = await env.run(activities.create_preference, str(payment.id))

    assert result.preference_id == f'pref_{payment.external_reference}'
    assert gateway.calls == [('create_preference', payment.external_reference)]


async def test_create_preference_rejected(
    env: ActivityEnvironment,
    activities: PaymentActivities,
    repository: PaymentRepository,
    gateway: FakePaymentGateway
):
    payment = await create_payment(repository)
    gateway.preference_error = GatewayClientError(400, 'invalid collector')

    with pytest.raises(ApplicationError) as e:
        await env.run(activities.create_preference, str(payment.id))

    assert e.value.type == GATEWAY_PREFERENCE_FAILED
    assert e.value.non_retryable


async def test_create_preference_unavailable_is_retried(
    env: ActivityEnvironment,
    activities: PaymentActivities,
    repository: PaymentRepository,
    gateway: FakePaymentGateway
):
    payment = await create_payment(repository)
    gateway.preference_error = GatewayUnavailableError('Mercado Pago responded with 503')

    # Обычное исключение Temporal повторит по retry policy
    with pytest.raises(GatewayUnavailableError):
        await env.run(activities.create_preference, str(payment.id))


async def test_save_correlation_data(env: ActivityEnvironment, activities: PaymentActivities, repository: PaymentRepository):
    payment = await create_payment(repository)

    await env.run(activities.save_correlation_data, CorrelationData(
        payment_id=str(payment.id),
        preference_id='pref_1',
        init_point='https://mp/init',
        sandbox_init_point='https://mp/sandbox'
    ))

    found = await repository.find_by_id(payment.id)
    assert found is not None
    assert found.provider_preference_id == 'pref_1'
    assert found.provider_init_point == 'https://mp/init'
    assert found.provider_sandbox_init_point == 'https://mp/sandbox'


async def test_save_correlation_data_for_missing_payment(env: ActivityEnvironment, activities: PaymentActivities):
    await env.run(activities.save_correlation_data, CorrelationData(
        payment_id=str(uuid4()),
        preference_id='pref_1',
        init_point='https://mp/init',
        sandbox_init_point='https://mp/sandbox'
    ))


async def test_update_status(env: ActivityEnvironment, activities: PaymentActivities, repository: PaymentRepository):
    payment = await create_payment(repository)

    applied = await env.run(activities.update_status, StatusUpdate(
        payment_id=str(payment.id),
        status=PaymentStatus.FAIL,
        fail_reason='timeout_waiting_confirmation'
    ))
    assert applied

    # Повтор активности после записи ничего не меняет
    applied = await env.run(activities.update_status, StatusUpdate(
        payment_id=str(payment.id),
        status=PaymentStatus.PAID
    ))
    assert not applied

    found = await repository.find_by_id(payment.id)
    assert found is not None
    assert found.status == PaymentStatus.FAIL
    assert found.fail_reason == 'timeout_waiting_confirmation'


async def test_update_status_for_missing_payment(env: ActivityEnvironment, activities: PaymentActivities):
    applied = await env.run(activities.update_status, StatusUpdate(payment_id=str(uuid4()), status=PaymentStatus.PAID))
    assert not applied


async def test_poll_without_preference(env: ActivityEnvironment, activities: PaymentActivities, repository: PaymentRepository):
    payment = await create_payment(repository)

    assert await env.run(activities.poll_status, str(payment.id)) is None
    assert await env.run(activities.poll_status, str(uuid4())) is None


@pytest.mark.parametrize(('search_status', 'expected'), [
    ('approved', PaymentStatus.PAID),
    ('rejected', PaymentStatus.FAIL),
    ('in_process', None),
    (None, None),
])
async def test_poll_status(
    env: ActivityEnvironment,
    repository: PaymentRepository,
    search_status: str | None,
    expected: PaymentStatus | None
):
    activities = PaymentActivities(repository=repository, gateway=FakePaymentGateway(search_status=search_status))
    payment = await create_payment(repository)
    await repository.update(payment.id, provider_preference_id='pref_1')

    assert await env.run(activities.poll_status, str(payment.id)) == expected


async def test_poll_returns_persisted_terminal_status(
    env: ActivityEnvironment,
    repository: PaymentRepository,
    gateway: FakePaymentGateway,
    activities: PaymentActivities
):
    payment = await create_payment(repository)
    await repository.update(payment.id, provider_preference_id='pref_1')
    await repository.finalize(payment.id, PaymentStatus.FAIL, fail_reason='manual_update')

    assert await env.run(activities.poll_status, str(payment.id)) == PaymentStatus.FAIL
    assert gateway.calls == []
