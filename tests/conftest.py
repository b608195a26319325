import sys
import pathlib
import pytest
import httpx
from uuid import UUID
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

sys.path.append(str(pathlib.Path(__file__).parent.parent/'src'))
sys.path.append(str(pathlib.Path(__file__).parent))

import tables
from tables import PaymentStatus
from services.repository import PaymentRepository
from services.gateway import FakePaymentGateway
from services.workflow_client import PaymentWorkflowPort, WorkflowStart, WorkflowSignalError, WorkflowStartError
from workflows.types import workflow_id_for


class FakePaymentWorkflow(PaymentWorkflowPort):
    """
    Вместо Temporal: старт сразу сохраняет ссылки на оплату, как это сделал бы worker,
    сигналы записываются в signals
    """

    def __init__(self, repository: PaymentRepository, gateway: FakePaymentGateway):
        self.repository = repository
        self.gateway = gateway
        self.started: dict[str, str] = {}
        self.signals: list[tuple[str, PaymentStatus, str | None, str | None]] = []
        self.start_error: WorkflowStartError | None = None
        self.signal_error: WorkflowSignalError | None = None

    async def start_credit_card_workflow(self, payment_id: str, external_reference: str) -> WorkflowStart:
        if self.start_error is not None:
            raise self.start_error

        workflow_id = workflow_id_for(external_reference)
        if workflow_id in self.started:
            return WorkflowStart(workflow_id=workflow_id, already_running=True)

        self.started[workflow_id] = payment_id
        ref = external_reference
        await self.repository.update(
            UUID(payment_id),
            provider_preference_id=f'pref_{ref}',
            provider_init_point=f'https://fake-mp/init-point/{ref}',
            provider_sandbox_init_point=f'https://fake-mp/sandbox/{ref}'
        )
        return WorkflowStart(workflow_id=workflow_id, already_running=False)

    async def signal_payment_result(
        self,
        external_reference: str,
        status: PaymentStatus,
        provider_payment_id: str | None = None,
        fail_reason: str | None = None
    ) -> None:
        if self.signal_error is not None:
            raise self.signal_error
        self.signals.append((external_reference, status, provider_payment_id, fail_reason))


@pytest.fixture
async def session_maker(tmp_path: pathlib.Path):
    engine = create_async_engine(f'sqlite+aiosqlite:///{tmp_path/"payments.db"}')
    async with engine.begin() as conn:
        await conn.run_sync(tables.Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def repository(session_maker: async_sessionmaker[AsyncSession]) -> PaymentRepository:
    return PaymentRepository(session_maker=session_maker)


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def payment_workflow(repository: PaymentRepository, gateway: FakePaymentGateway) -> FakePaymentWorkflow:
    return FakePaymentWorkflow(repository, gateway)


@pytest.fixture
async def api_client(
    session_maker: async_sessionmaker[AsyncSession],
    gateway: FakePaymentGateway,
    payment_workflow: FakePaymentWorkflow
):
    import db.postgres
    import services.dependencies
    from main import app

    app.dependency_overrides[db.postgres.get_session_maker] = lambda: session_maker
    services.dependencies.gateway = gateway
    services.dependencies.payment_workflow = payment_workflow

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url='http://tests') as client:
        yield client

    app.dependency_overrides.clear()
    services.dependencies.gateway = None
    services.dependencies.payment_workflow = None
