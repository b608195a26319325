from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='payments_api_')

    # Время ожидания сигнала от веб-хука, после него workflow переходит к опросу шлюза
    confirmation_timeout_minutes: int = Field(default=10)
    # Сколько create ждет появления init_point у CREDIT_CARD платежа
    creation_wait_timeout: float = Field(default=5.0)
    creation_wait_poll_interval: float = Field(default=0.5)

    temporal_enabled: bool = Field(default=True)
    gateway_mock: bool = Field(default=False)


class PostgresSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='payments_postgres_')

    host: str = Field(default='127.0.0.1')
    port: int = Field(default=5432)
    user: str = Field(default='postgres')
    password: str = Field(default='postgres')
    db: str = Field(default='payments')

    def get_url(self, driver: str | None, db: str | None = None):
        scheme = f'postgresql{f"+{driver}" if driver else ""}'
        return f'{scheme}://{self.user}:{self.password}@{self.host}:{self.port}/{db or self.db}'


class TemporalSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='payments_temporal_')

    address: str = Field(default='localhost:7233')
    namespace: str = Field(default='default')
    task_queue: str = Field(default='payments-queue')


class MercadoPagoSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='payments_mercadopago_')

    access_token: str = Field(default='TEST-TOKEN')
    base_url: str = Field(default='https://api.mercadopago.com')
    notification_url: str = Field(default='http://localhost/api/v1/webhooks/mercadopago')
    success_url: str = Field(default='http://localhost/api/v1/mercadopago/success')
    failure_url: str = Field(default='http://localhost/api/v1/mercadopago/failure')
    pending_url: str = Field(default='http://localhost/api/v1/mercadopago/pending')
    currency: str = Field(default='BRL')
    connection_timeout_sec: float = 30.0


settings = Settings()
pg_settings = PostgresSettings()
temporal_settings = TemporalSettings()
mercadopago_settings = MercadoPagoSettings()
