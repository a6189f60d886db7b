from typing import List, Optional

from pydantic_settings import BaseSettings

from stepguard.core.policy import DeviceTrustPolicy, VerificationMethod


class Settings(BaseSettings):
    PROJECT_NAME: str = "Stepguard Device Trust Service"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # MongoDB Config
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB_NAME: str = "stepguard"
    # Multi-document transactions need a replica set
    MONGO_USE_TRANSACTIONS: bool = False

    # Redis (request throttling); throttling is off when unset
    REDIS_URL: Optional[str] = None
    AUTH_RATE_LIMIT: int = 10
    AUTH_RATE_WINDOW_SECONDS: int = 10
    API_RATE_LIMIT: int = 100
    API_RATE_WINDOW_SECONDS: int = 60

    # Tokens issued by the identity provider
    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"

    # Identity provider
    IDENTITY_PROVIDER_URL: str = "http://localhost:9999"
    IDENTITY_PROVIDER_API_KEY: str = ""
    IDENTITY_PROVIDER_TIMEOUT_SECONDS: float = 5.0

    # Email alerts
    EMAIL_ALERTS_ENABLED: bool = True
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASS: str = ""

    # Device trust policy
    DEVICE_TRUST_GRACE_PERIOD_MINUTES: int = 5
    DEVICE_TRUST_CODE_LENGTH: int = 6
    DEVICE_TRUST_CODE_EXPIRY_MINUTES: int = 10
    DEVICE_TRUST_SESSION_MAX_AGE_DAYS: int = 365
    DEVICE_TRUST_BACKUP_CODE_COUNT: int = 8
    DEVICE_TRUST_SMS_ENABLED: bool = False

    class Config:
        env_file = ".env"

    def device_trust_policy(self) -> DeviceTrustPolicy:
        methods = {
            VerificationMethod.AUTHENTICATOR,
            VerificationMethod.BACKUP_CODES,
            VerificationMethod.PASSWORD,
            VerificationMethod.DEVICE_CODE,
        }
        if self.DEVICE_TRUST_SMS_ENABLED:
            methods.add(VerificationMethod.SMS)

        return DeviceTrustPolicy(
            grace_period_minutes=self.DEVICE_TRUST_GRACE_PERIOD_MINUTES,
            code_length=self.DEVICE_TRUST_CODE_LENGTH,
            code_expiry_minutes=self.DEVICE_TRUST_CODE_EXPIRY_MINUTES,
            session_max_age_days=self.DEVICE_TRUST_SESSION_MAX_AGE_DAYS,
            backup_code_count=self.DEVICE_TRUST_BACKUP_CODE_COUNT,
            enabled_methods=frozenset(methods),
        )


settings = Settings()
