"""
Gateway settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings: these values are resolved once at the
composition root and then passed explicitly into every gateway operation,
e.g. ``GATEWAY__OGONE__SHA_IN_PASSPHRASE=...``.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class GatewayTimeouts(BaseModel):
    connect: float = 2.0
    read: float = 10.0
    write: float = 10.0
    total: float = 15.0


class StatusPollRetry(BaseModel):
    attempts: int = 3
    base_backoff: float = 0.5
    max_backoff: float = 10.0


class WebhookSettings(BaseModel):
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to deliver callbacks


class AlertSettings(BaseModel):
    enabled: bool = True
    recipient: Optional[str] = None  # operator mailbox for integrity alerts
    sender: str = "paygate@localhost"
    smtp_host: Optional[str] = None  # unset: alerts are only logged
    smtp_port: int = 25
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_starttls: bool = False
    smtp_timeout: float = 10.0


class ProviderSettings(BaseModel):
    enabled: bool = True
    test_mode: bool = True


class OgoneSettings(ProviderSettings):
    pspid: Optional[str] = None
    sha_in_passphrase: str = ""
    sha_out_passphrase: str = ""
    api_user_id: Optional[str] = None
    api_password: Optional[str] = None
    language: str = "en_US"
    payment_methods: Optional[str] = None  # PMLIST
    template_url: Optional[str] = None     # TP


class BuckarooSettings(ProviderSettings):
    website_key: Optional[str] = None
    secret_key: str = ""
    payment_method: Optional[str] = None
    requested_services: Optional[str] = None
    excluded_services: Optional[str] = None
    culture: str = "en-US"


class WannafindSettings(ProviderSettings):
    shop_id: Optional[str] = None
    md5_auth_secret: str = ""
    md5_callback_secret: str = ""
    api_user: Optional[str] = None
    api_password: Optional[str] = None
    api_url: str = "https://api.wannafind.dk/pg.php"
    pay_type: str = "creditcard"
    card_type: str = ""
    language: str = "en"


class TwoCheckoutSettings(ProviderSettings):
    sid: Optional[str] = None
    secret_word: str = ""
    language: str = "en"


class WorldPaySettings(ProviderSettings):
    inst_id: Optional[str] = None
    md5_secret: str = ""
    payment_response_password: str = ""
    auth_mode: str = "A"  # A = full auth (captured), E = pre-auth
    language: str = "en"


class MollieSettings(ProviderSettings):
    partner_id: Optional[str] = None
    profile_key: str = ""
    secret_key: str = ""
    description_prefix: str = "Order"
    rounding_decimals: int = 2


class KlarnaSettings(ProviderSettings):
    merchant_id: Optional[str] = None
    shared_secret: str = ""
    locale: str = "en-gb"
    purchase_country: str = "GB"
    terms_uri: Optional[str] = None
    payment_form_url: Optional[str] = None
    total_sku: str = "order-total"
    total_name: str = "Order total"


class GatewaySettings(BaseSettings):
    timeouts: GatewayTimeouts = Field(default_factory=GatewayTimeouts)
    status_poll: StatusPollRetry = Field(default_factory=StatusPollRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    alerts: AlertSettings = Field(default_factory=AlertSettings)

    ogone: OgoneSettings = Field(default_factory=OgoneSettings)
    buckaroo: BuckarooSettings = Field(default_factory=BuckarooSettings)
    wannafind: WannafindSettings = Field(default_factory=WannafindSettings)
    twocheckout: TwoCheckoutSettings = Field(default_factory=TwoCheckoutSettings)
    worldpay: WorldPaySettings = Field(default_factory=WorldPaySettings)
    mollie: MollieSettings = Field(default_factory=MollieSettings)
    klarna: KlarnaSettings = Field(default_factory=KlarnaSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="GATEWAY__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    def for_provider(self, provider: str) -> ProviderSettings:
        value = getattr(self, provider, None)
        if not isinstance(value, ProviderSettings):
            raise KeyError(provider)
        return value

    def providers(self) -> dict[str, ProviderSettings]:
        found: dict[str, ProviderSettings] = {}
        for name in type(self).model_fields:
            value = getattr(self, name)
            if isinstance(value, ProviderSettings):
                found[name] = value
        return found


gateway_settings = GatewaySettings()
