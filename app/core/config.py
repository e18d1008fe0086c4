from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from decimal import Decimal
from pydantic import field_validator

class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'fieldbill_user'
    POSTGRES_PASSWORD: str = 'fieldbill_pass'
    POSTGRES_DB: str = 'fieldbill_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[str] = None  # Si se define, tiene prioridad sobre POSTGRES_*
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # Email settings
    EMAIL_SMTP_SERVER: str = 'smtp.gmail.com'
    EMAIL_SMTP_PORT: int = 587
    EMAIL_USE_TLS: bool = True
    EMAIL_USERNAME: str = ''
    EMAIL_PASSWORD: str = ''
    EMAIL_FROM: str = ''
    EMAIL_FROM_NAME: str = 'Fieldbill'
    EMAIL_MAX_ATTEMPTS: int = 3
    EMAIL_RETRY_BACKOFF_SECONDS: float = 2.0

    # Billing defaults
    DEFAULT_PAYMENT_TERMS_DAYS: int = 30
    VAT_RATE_STANDARD: Decimal = Decimal('0.19')
    VAT_RATE_REDUCED: Decimal = Decimal('0.05')  # Solo alquiler de contenedores
    ALLOW_ZERO_VAT_UPDATE: bool = False
    DOCUMENT_NUMBER_MAX_ATTEMPTS: int = 3
    MAX_JOBS_PER_INVOICE: int = 50

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

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", "EMAIL_USE_TLS", "ALLOW_ZERO_VAT_UPDATE", mode="before")
    @classmethod
    def parse_bool(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

settings = Settings()
