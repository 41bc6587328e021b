from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from pydantic import field_validator

class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'pos_user'
    POSTGRES_PASSWORD: str = 'pos_pass'
    POSTGRES_DB: str = 'pos_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[str] = None  # Overrides the Postgres settings when set (e.g. sqlite for tests)

    # MinIO settings (receipt archive)
    MINIO_HOST: str = 'minio'
    MINIO_PORT: int = 9000
    MINIO_ACCESS_KEY: str = 'minioadmin'
    MINIO_SECRET_KEY: str = 'minioadmin'
    MINIO_BUCKET_NAME: str = 'pos-receipts'
    MINIO_USE_SSL: bool = False
    MINIO_REGION: str = 'us-east-1'
    RECEIPT_ARCHIVE_ENABLED: bool = False

    # JWT settings
    APP_SECRET_STRING: str = 'your-super-secret-key-here-change-in-production-2024'
    ALGORITHM: str = 'HS256'

    # POS settings
    POS_TRANSACTION_RETRIES: int = 3
    POS_LOCK_TIMEOUT_SECONDS: float = 5.0  # Espera máxima por el bloqueo de la venta
    POS_CURRENCY_SYMBOL: str = '$'

    # Receipt issuer
    COMPANY_NAME: str = 'Emisor no configurado'
    COMPANY_TAX_ID: str = '000000000-0'
    COMPANY_ADDRESS: str = 'Dirección no configurada'
    COMPANY_CITY: str = 'Ciudad'
    COMPANY_STATE: str = 'Departamento'

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def minio_endpoint(self) -> str:
        scheme = "https" if self.MINIO_USE_SSL else "http"
        return f"{scheme}://{self.MINIO_HOST}:{self.MINIO_PORT}"

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", mode="before")
    @classmethod
    def parse_debug(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("MINIO_USE_SSL", "RECEIPT_ARCHIVE_ENABLED", mode="before")
    @classmethod
    def parse_flags(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("POS_TRANSACTION_RETRIES")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError("POS_TRANSACTION_RETRIES must be at least 1")
        return v

    @field_validator("POS_LOCK_TIMEOUT_SECONDS")
    @classmethod
    def validate_lock_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("POS_LOCK_TIMEOUT_SECONDS must be positive")
        return v

settings = Settings()
