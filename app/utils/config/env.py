from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_DEFAULT_DOMAINS_FILE = Path(__file__).resolve().parents[2] / "data" / "college_domains.json"


class Settings(BaseSettings):
    app_name: str = "CampusKarma"
    api_version: str = "v1"
    environment: str = Field(default="development", validation_alias=AliasChoices("ENVIRONMENT", "NODE_ENV"))
    debug: bool = True
    log_level: str = "INFO"
    port: int = 5000

    mongodb_uri: str | None = None
    skip_db: bool = False
    mongo_port: int = 27017
    mongo_host: str = "localhost"
    mongo_db: str = "campuskarma"
    mongo_password: str | None = None
    mongo_user: str | None = None

    jwt_algorithm: str = "HS256"
    jwt_secret: str = "campuskarma-secret-key"
    jwt_expires_in: str = "7d"

    otp_length: int = 6
    otp_expiry_minutes: int = 10
    otp_max_attempts: int = 3
    otp_max_per_hour: int = 3
    otp_rate_limit_window_minutes: int = 60
    otp_hash_rounds: int = 10

    college_domains_file: str = str(_DEFAULT_DOMAINS_FILE)
    frontend_url: str = "http://localhost:3000"
    magic_link_expires_in: str = "10m"
    anon_salt: str = "campuskarma-anon"

    email_service: str = "console"
    email_async: bool = False
    email_from: str = "noreply@campuskarma.app"
    email_from_name: str = "CampusKarma Team"
    email_support: str = "support@campuskarma.app"
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_pass: str | None = None
    smtp_secure: bool = False
    resend_api_key: str | None = None
    sendgrid_api_key: str | None = None
    email_timeout_seconds: float = 10.0

    redis_db: int = 0
    redis_port: int = 6379
    redis_host: str = "localhost"
    redis_password: str | None = None

    model_config = SettingsConfigDict(env_file=(".env",), case_sensitive=False, extra="ignore")

    @property
    def mongo_uri(self) -> str:
        if self.mongodb_uri:
            return self.mongodb_uri
        auth = ""
        if self.mongo_user and self.mongo_password:
            auth = f"{self.mongo_user}:{self.mongo_password}@"
        return f"mongodb://{auth}{self.mongo_host}:{self.mongo_port}/{self.mongo_db}"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


settings = Settings()
