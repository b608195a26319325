"""Mercado Pago gateway: port, httpx implementation and a deterministic fake.

The fake is selected at construction time (``settings.gateway_mock``) so
activities never branch on configuration themselves.
"""
import httpx
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from dataclasses import dataclass, field

from tables import PaymentStatus
from settings import mercadopago_settings, MercadoPagoSettings


logger = logging.getLogger('payments-gateway')


class GatewayError(Exception):
    ...


class GatewayClientError(GatewayError):
    """4xx: запрос отклонен, повтор не поможет"""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class GatewayUnavailableError(GatewayError):
    """5xx или сетевая ошибка, можно повторить"""


@dataclass(frozen=True)
class PreferenceRequest:
    external_reference: str
    amount: Decimal
    description: str
    payer_tax_id: str


@dataclass(frozen=True)
class PreferenceResult:
    preference_id: str
    init_point: str
    sandbox_init_point: str


@dataclass(frozen=True)
class ProviderPayment:
    id: str
    external_reference: str | None
    status: str


# https://www.mercadopago.com.br/developers/en/reference/payments/_payments_id/get
_STATUS_MAP = {
    'approved': PaymentStatus.PAID,
    'rejected': PaymentStatus.FAIL,
    'cancelled': PaymentStatus.FAIL,
    'refunded': PaymentStatus.FAIL,
    'charged_back': PaymentStatus.FAIL,
}


def map_provider_status(provider_status: str | None) -> PaymentStatus:
    # pending, in_process, authorized, in_mediation и неизвестные - еще не результат
    return _STATUS_MAP.get(provider_status or '', PaymentStatus.PENDING)


def provider_fail_reason(provider_status: str) -> str:
    return f'provider_status_{provider_status}'


class PaymentGateway(ABC):

    @abstractmethod
    async def create_preference(self, request: PreferenceRequest) -> PreferenceResult:
        ...

    @abstractmethod
    async def get_payment_by_id(self, provider_payment_id: str) -> ProviderPayment:
        ...

    @abstractmethod
    async def search_payment_by_external_reference(self, external_reference: str) -> ProviderPayment | None:
        ...


@dataclass(frozen=True)
class MercadoPagoGateway(PaymentGateway):
    client: httpx.AsyncClient
    config: MercadoPagoSettings = field(default_factory=lambda: mercadopago_settings)

    async def create_preference(self, request: PreferenceRequest) -> PreferenceResult:
        # https://www.mercadopago.com.br/developers/en/reference/preferences/_checkout_preferences/post
        response = await self._request(
            'POST',
            '/checkout/preferences',
            headers={'X-Idempotency-Key': request.external_reference},
            json={
                'items': [{
                    'title': request.description.strip() or 'Payment',
                    'quantity': 1,
                    'currency_id': self.config.currency,
                    'unit_price': float(request.amount)
                }],
                'external_reference': request.external_reference,
                'payer': {
                    'identification': {'type': 'CPF', 'number': request.payer_tax_id}
                },
                'notification_url': self.config.notification_url,
                'auto_return': 'approved',
                'back_urls': {
                    'success': self.config.success_url,
                    'failure': self.config.failure_url,
                    'pending': self.config.pending_url
                }
            }
        )
        response_json = response.json()

        return PreferenceResult(
            preference_id=str(response_json['id']),
            init_point=response_json['init_point'],
            sandbox_init_point=response_json['sandbox_init_point']
        )

    async def get_payment_by_id(self, provider_payment_id: str) -> ProviderPayment:
        response = await self._request('GET', f'/v1/payments/{provider_payment_id}')
        response_json = response.json()

        return ProviderPayment(
            id=str(response_json['id']),
            external_reference=response_json.get('external_reference') or None,
            status=response_json['status']
        )

    async def search_payment_by_external_reference(self, external_reference: str) -> ProviderPayment | None:
        response = await self._request(
            'GET',
            '/v1/payments/search',
            params={
                'external_reference': external_reference,
                'sort': 'date_created',
                'criteria': 'desc'
            }
        )
        results = response.json().get('results') or []
        if not results:
            return None

        latest = results[0]
        return ProviderPayment(
            id=str(latest['id']),
            external_reference=latest.get('external_reference') or None,
            status=latest['status']
        )

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f'couldn\'t reach Mercado Pago ({method} {url}): {e!r}')
            raise GatewayUnavailableError(f'failed to communicate with Mercado Pago: {e!r}') from e

        if response.status_code >= 500:
            logger.warning(f'got status {response.status_code} from Mercado Pago ({method} {url})')
            raise GatewayUnavailableError(f'Mercado Pago responded with {response.status_code}')
        if response.status_code >= 400:
            logger.warning(f'got status {response.status_code} from Mercado Pago ({method} {url}): {response.text}')
            raise GatewayClientError(response.status_code, f'Mercado Pago error: {response.text}')

        return response


class FakePaymentGateway(PaymentGateway):
    """Deterministic gateway for local runs and tests, never touches the network."""

    def __init__(self, search_status: str | None = 'approved') -> None:
        self.search_status = search_status
        self.preference_error: GatewayError | None = None
        self.payments: dict[str, ProviderPayment] = {}
        self.calls: list[tuple[str, str]] = []

    def register_payment(self, provider_payment_id: str, external_reference: str | None, status: str) -> None:
        self.payments[provider_payment_id] = ProviderPayment(
            id=provider_payment_id,
            external_reference=external_reference,
            status=status
        )

    async def create_preference(self, request: PreferenceRequest) -> PreferenceResult:
        self.calls.append(('create_preference', request.external_reference))
        if self.preference_error is not None:
            raise self.preference_error

        ref = request.external_reference
        return PreferenceResult(
            preference_id=f'pref_{ref}',
            init_point=f'https://fake-mp/init-point/{ref}',
            sandbox_init_point=f'https://fake-mp/sandbox/{ref}'
        )

    async def get_payment_by_id(self, provider_payment_id: str) -> ProviderPayment:
        self.calls.append(('get_payment_by_id', provider_payment_id))
        payment = self.payments.get(provider_payment_id)
        if payment is None:
            raise GatewayClientError(404, f'payment {provider_payment_id} not found')
        return payment

    async def search_payment_by_external_reference(self, external_reference: str) -> ProviderPayment | None:
        self.calls.append(('search_payment_by_external_reference', external_reference))
        for payment in reversed(self.payments.values()):
            if payment.external_reference == external_reference:
                return payment

        if self.search_status is None:
            return None
        return ProviderPayment(
            id=f'fake-{external_reference}',
            external_reference=external_reference,
            status=self.search_status
        )


def create_gateway(mock: bool, config: MercadoPagoSettings = mercadopago_settings) -> PaymentGateway:
    if mock:
        return FakePaymentGateway()

    return MercadoPagoGateway(
        client=httpx.AsyncClient(
            base_url=config.base_url,
            headers={'Authorization': f'Bearer {config.access_token}'},
            timeout=config.connection_timeout_sec
        ),
        config=config
    )
