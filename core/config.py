"""
配置文件 - 项目配置管理
"""
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    url: str = "sqlite+aiosqlite:///./novapay.db"
    echo: bool = False


class RedisSettings(BaseModel):
    url: Optional[str] = None
    max_connections: int = 10
    namespace: str = "novapay"


class NovapaySettings(BaseModel):
    """Commercial terms and constants of the NovaPay network."""
    # Platform fee charged on capture (2.5%)
    fee_rate: Decimal = Decimal("0.025")
    hold_expiry_days: int = 7
    checkout_base_url: str = "http://localhost:3000"
    currencies: list[str] = Field(
        default_factory=lambda: ["USD", "EUR", "GBP", "CHF", "JPY", "CAD", "AUD"]
    )
    card_prefix: str = "7"
    card_length: int = 16
    # np_ is current, pk_ is the legacy merchant key format
    api_key_prefixes: list[str] = Field(default_factory=lambda: ["np_", "pk_"])
    expiry_sweep_batch_size: int = 100

    @field_validator("fee_rate")
    @classmethod
    def _validate_fee_rate(cls, v: Decimal) -> Decimal:
        if v < 0 or v >= 1:
            raise ValueError("fee_rate must be within [0, 1)")
        return v


class IdempotencySettings(BaseModel):
    backend: str = "database"  # database | redis
    ttl_hours: int = 24
    # How long a duplicate waits for the in-flight original before failing fast
    wait_seconds: float = 2.0
    poll_interval_seconds: float = 0.1
    # A pending claim older than this is treated as abandoned (dead worker) and may be taken over
    pending_lease_seconds: int = 60


class WebhookSettings(BaseModel):
    timeout_seconds: float = 5.0
    max_attempts: int = 8
    backoff_base_seconds: int = 30
    backoff_max_seconds: int = 3600
    inline_retries: int = 2
    batch_size: int = 50
    signing_secret: Optional[str] = None
    user_agent: str = "NovaPay-Webhooks/1.0"


class CelerySettings(BaseModel):
    broker_url: Optional[str] = None
    result_backend: Optional[str] = None
    drain_interval_seconds: int = 30
    expiry_sweep_interval_seconds: int = 300
    idempotency_purge_interval_seconds: int = 3600


class Settings(BaseSettings):
    """项目配置"""

    # 基础配置
    PROJECT_NAME: str = "NovaPay Flow Engine"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"

    # 分组配置：嵌套模型，环境变量使用 "__" 分隔，例如 NOVAPAY__FEE_RATE
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    novapay: NovapaySettings = Field(default_factory=NovapaySettings)
    idempotency: IdempotencySettings = Field(default_factory=IdempotencySettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    celery: CelerySettings = Field(default_factory=CelerySettings)

    # CORS配置（商户网站直接调用）
    CORS_ORIGINS: list = Field(default=["*"])

    # 日志/请求体记录配置
    LOG_REQUEST_BODY_ENABLE_BY_DEFAULT: bool = True
    LOG_REQUEST_BODY_MAX_BYTES: int = 2048

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        """允许 JSON 字符串或逗号分隔字符串两种格式。"""
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("[") and s.endswith("]"):
                import json
                try:
                    arr = json.loads(s)
                    if isinstance(arr, list):
                        return arr
                except ValueError:
                    pass
            if "," in s:
                return [item.strip() for item in s.split(",") if item.strip()]
            return [s]
        return v


settings = Settings()
