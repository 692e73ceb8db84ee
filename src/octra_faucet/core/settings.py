"""Application settings and configuration.

This module defines all configuration options for the Octra faucet backend.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CORS_ORIGINS = [
    "https://oct-faucet.xme.my.id",
    "https://www.oct-faucet.xme.my.id",
    "https://oct-faucet.local",
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:3000",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Secrets are optional at this level so the module can be imported by
    tooling; `load_faucet_config` enforces the ones the service needs.
    """

    # Application metadata
    app_name: str = Field(default="Octra Faucet", alias="APP_NAME")
    app_version: str = Field(default="1.0.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3001, alias="PORT")

    # Redis configuration for cooldowns, statistics and request throttling.
    # "memory://" selects the in-process store.
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")

    # reCAPTCHA verification
    recaptcha_secret_key: str | None = Field(default=None, alias="RECAPTCHA_SECRET_KEY")
    recaptcha_verify_url: str = Field(
        default="https://www.google.com/recaptcha/api/siteverify",
        alias="RECAPTCHA_VERIFY_URL",
    )
    recaptcha_timeout_seconds: float = Field(default=10.0, alias="RECAPTCHA_TIMEOUT_SECONDS")

    # Faucet wallet and node RPC
    faucet_private_key: str | None = Field(default=None, alias="FAUCET_PRIVATE_KEY")
    faucet_public_key: str | None = Field(default=None, alias="FAUCET_PUBLIC_KEY")
    faucet_address: str | None = Field(default=None, alias="FAUCET_ADDRESS")
    octra_rpc_url: str = Field(default="https://octra.network", alias="OCTRA_RPC_URL")
    rpc_read_timeout_seconds: float = Field(default=10.0, alias="RPC_READ_TIMEOUT_SECONDS")
    rpc_submit_timeout_seconds: float = Field(default=30.0, alias="RPC_SUBMIT_TIMEOUT_SECONDS")

    # Disbursement and cooldowns
    faucet_amount: float = Field(default=0.5, gt=0, alias="FAUCET_AMOUNT")
    address_cooldown_seconds: int = Field(default=86_400, gt=0, alias="ADDRESS_COOLDOWN_SECONDS")
    ip_cooldown_seconds: int = Field(default=3_600, gt=0, alias="IP_COOLDOWN_SECONDS")

    # Coarse request throttling (fixed windows per client IP)
    global_rate_limit: int = Field(default=100, alias="GLOBAL_RATE_LIMIT")
    global_rate_limit_window_seconds: int = Field(
        default=15 * 60,
        alias="GLOBAL_RATE_LIMIT_WINDOW_SECONDS",
    )
    claim_rate_limit: int = Field(default=1, alias="CLAIM_RATE_LIMIT")
    claim_rate_limit_window_seconds: int = Field(
        default=60 * 60,
        alias="CLAIM_RATE_LIMIT_WINDOW_SECONDS",
    )

    # Reverse proxy handling
    trust_proxy: bool = Field(default=False, alias="TRUST_PROXY")

    # CORS configuration for web frontend access
    frontend_url: str | None = Field(default=None, alias="FRONTEND_URL")
    cors_origins: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CORS_ORIGINS),
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=[
            "Content-Type",
            "Authorization",
            "X-Requested-With",
            "Accept",
            "Origin",
        ],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def allowed_origins(self) -> list[str]:
        """Return CORS origins including the configured frontend URL."""
        origins = list(self.cors_origins)
        if self.frontend_url and self.frontend_url not in origins:
            origins.append(self.frontend_url)
        return origins

    @property
    def recaptcha_configured(self) -> bool:
        return bool(self.recaptcha_secret_key and self.recaptcha_secret_key.strip())

    @property
    def faucet_configured(self) -> bool:
        return bool(self.faucet_address and self.faucet_private_key and self.faucet_public_key)


settings = Settings()
