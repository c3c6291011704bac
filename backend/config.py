"""Application configuration using pydantic-settings."""

from typing import Any

from pydantic import ValidationInfo, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from services.credential_manager import CREDENTIAL_KEYS, get_credential


class KeychainSettingsSource(PydanticBaseSettingsSource):
    """Load credential fields from the OS keychain via ``keyring``.

    Only fields whose uppercase name appears in
    :data:`~services.credential_manager.CREDENTIAL_KEYS` are looked up.
    All other fields return ``None`` so the next source in the chain
    handles them.
    """

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        env_name = field_name.upper()
        if env_name not in CREDENTIAL_KEYS:
            return None, field_name, False
        value = get_credential(env_name)
        return value, field_name, False

    def __call__(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for field_name, field_info in self.settings_cls.model_fields.items():
            value, key, is_complex = self.get_field_value(field_info, field_name)
            if value is not None:
                d[key] = value
        return d


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            KeychainSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    # Database (durable price cache)
    DATABASE_URL: str = "sqlite:///./pricefolio.db"

    # Provider credentials (optional; keyless tiers are used when empty)
    FINNHUB_API_KEY: str = ""
    COINGECKO_API_KEY: str = ""

    # Provider endpoints
    FINNHUB_BASE_URL: str = "https://finnhub.io/api/v1"
    COINGECKO_BASE_URL: str = "https://api.coingecko.com/api/v3"
    METALS_API_URL: str = "https://goldpricez.com/api/rates/currency/usd/measure/ounce"
    HTTP_TIMEOUT_SECONDS: float = 15.0

    # Price cache TTLs, per asset class
    PRICE_TTL_DEFAULT_SECONDS: float = 60.0
    PRICE_TTL_CRYPTO_SECONDS: float = 300.0
    PRICE_TTL_METALS_SECONDS: float = 3600.0
    HISTORY_TTL_SECONDS: float = 300.0

    # Provider error policy
    RATE_LIMIT_MAX_RETRIES: int = 2
    RATE_LIMIT_BASE_DELAY_SECONDS: float = 1.0
    FORBIDDEN_COOLDOWN_SECONDS: float = 300.0

    # Batch orchestration
    EQUITY_BATCH_SIZE: int = 10
    EQUITY_BATCH_PAUSE_SECONDS: float = 0.1
    PRICE_FETCH_MAX_WORKERS: int = 8
    PRICE_REFRESH_TIMEOUT_SECONDS: float = 30.0

    # Symbol resolution
    RESOLUTION_CACHE_SIZE: int = 512

    @field_validator("LOG_LEVEL", "PROVIDER_LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | None, info: ValidationInfo) -> str | None:
        """Validate and normalize a log level to an uppercase Python logging level."""
        if v is None or (info.field_name == "PROVIDER_LOG_LEVEL" and not v):
            return None
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"{info.field_name} must be one of {valid}, got {v!r}")
        return v.upper()

    @field_validator(
        "HTTP_TIMEOUT_SECONDS",
        "PRICE_TTL_DEFAULT_SECONDS",
        "PRICE_TTL_CRYPTO_SECONDS",
        "PRICE_TTL_METALS_SECONDS",
        "HISTORY_TTL_SECONDS",
        "FORBIDDEN_COOLDOWN_SECONDS",
        "PRICE_REFRESH_TIMEOUT_SECONDS",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Durations must be strictly positive."""
        if v <= 0:
            raise ValueError(f"duration must be positive, got {v!r}")
        return v

    @field_validator("EQUITY_BATCH_SIZE", "PRICE_FETCH_MAX_WORKERS", "RESOLUTION_CACHE_SIZE")
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be at least 1, got {v!r}")
        return v

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    # Overrides LOG_LEVEL for the provider clients under integrations/
    PROVIDER_LOG_LEVEL: str | None = None


settings = Settings()
