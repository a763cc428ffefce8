from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
from decimal import Decimal


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./bigpos.db"

    # JWT Authentication
    SECRET_KEY: str = "change-this-in-production-secret-key-12345"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # Application
    APP_NAME: str = "BIG POS Commerce Backend"
    APP_VERSION: str = "1.0.0"
    CURRENCY: str = "RWF"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["*"]  # Restrict in production

    # Password security
    BCRYPT_ROUNDS: int = 12

    # Bootstrap admin, created on startup when both are set
    ADMIN_EMAIL: str = ""
    ADMIN_PASSWORD: str = ""

    # Mobile money gateway (PalmKash)
    DEV_MODE: bool = False
    PALMKASH_CLIENT_ID: str = ""
    PALMKASH_SECRET_KEY: str = ""
    PALMKASH_ENV: str = "sandbox"
    PALMKASH_TIMEOUT: int = 30
    BACKEND_URL: str = "http://localhost:8000"

    # Ledger constants
    REWARD_GAS_RWF_PER_UNIT: Decimal = Decimal("300")
    ORDER_REWARD_RATE: Decimal = Decimal("0.12")
    GAS_RWF_PER_UNIT: Decimal = Decimal("1500")
    GAS_TOPUP_REWARD_RATE: Decimal = Decimal("0.10")
    REDEEM_POINTS_PER_UNIT: int = 100
    REDEEM_RWF_PER_UNIT: Decimal = Decimal("1000")
    MIN_REDEEM_POINTS: int = 100
    LOAN_MAX_AMOUNT: Decimal = Decimal("50000")
    LOAN_TERM_DAYS: int = 30
    LOAN_INSTALLMENTS: int = 4
    DEFAULT_RETAIL_MARKUP: Decimal = Decimal("1.2")

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    @property
    def palmkash_base_url(self) -> str:
        if self.PALMKASH_ENV == "sandbox":
            return "https://api-sandbox.palmkash.com/v1"
        return "https://api.palmkash.com/v1"


settings = Settings()
