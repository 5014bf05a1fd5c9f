from pydantic_settings import BaseSettings
from typing import List, Union
from pydantic import field_validator
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # API Settings
    PROJECT_NAME: str = "e-Petitions Signing API"
    SITE_URL: str = "https://petitions.gov.je"

    # Database Settings
    POSTGRES_USER: str = "user"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "epetitions"

    @property
    def DATABASE_URL(self) -> str:
        return f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Redis Settings (rate-limit event log and Celery broker)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    @property
    def REDIS_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # Session cookie and acknowledgement cookie signing
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    SESSION_COOKIE_NAME: str = "_epets_session"
    SESSION_COOKIE_SECURE: bool = True

    # AWS SES Settings
    AWS_REGION: str = "eu-west-2"
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_SES_FROM_EMAIL: str = "no-reply@petitions.gov.je"
    AWS_SES_FROM_NAME: str = "Petitions: States Assembly"

    # Postcode -> constituency lookup
    CONSTITUENCY_API_URL: str = "https://api.petitions.gov.je/constituencies"
    CONSTITUENCY_API_TIMEOUT: float = 5.0

    # Signing pipeline
    SIGNATURE_ALIAS_RESOLUTION: bool = True
    RATE_LIMIT_FINGERPRINT: str = "ip"
    RATE_LIMIT_FAIL_OPEN: bool = False
    FORM_REQUEST_LIFETIME_HOURS: int = 24
    PERISHABLE_TOKEN_LIFETIME_DAYS: int = 30
    SIGNED_TOKEN_LIFETIME_MINUTES: int = 60
    CLOSED_VALIDATION_GRACE_HOURS: int = 24

    # Signature email queueing
    MAIL_QUEUE_TIMEOUT_SECONDS: float = 5.0
    MAIL_QUEUE_MAX_RETRIES: int = 3

    # Site thresholds
    THRESHOLD_FOR_RESPONSE: int = 1000
    THRESHOLD_FOR_DEBATE: int = 5000

    # Logging
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = True

    # CORS Settings - can be set as JSON string in .env
    BACKEND_CORS_ORIGINS: Union[List[str], str] = ["http://localhost:3000", "http://localhost:8000"]

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Union[List[str], str]) -> List[str]:
        """Parse CORS origins from JSON string or list"""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                # If not valid JSON, split by comma
                return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("RATE_LIMIT_FINGERPRINT")
    @classmethod
    def validate_fingerprint(cls, v: str) -> str:
        """Rate limiting counts submissions per IP address or per email domain"""
        v = v.strip().lower()
        if v not in ("ip", "domain"):
            raise ValueError("RATE_LIMIT_FINGERPRINT must be 'ip' or 'domain'")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
