from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = Field("sqlite:///dormhotel.db", description="SQLAlchemy URL")
    db_pool_timeout: int = Field(60, description="Seconds to wait for a pooled connection")
    db_init_max_retries: int = Field(10, ge=1)
    db_init_retry_delay: float = Field(5.0, ge=0)
    api_title: str = "DormHotel Booking API"
    log_level: str = "INFO"
    jwt_secret: str = "your-secret-key"
    jwt_algorithm: str = "HS256"
    token_expire_hours: int = 8
    bcrypt_rounds: int = Field(12, ge=4, le=31)
    cookie_secure: bool = False
    admin_email: str = "admin@thedormhotel.com"
    admin_password: str = "admin123"

    @field_validator("admin_password")
    @classmethod
    def _admin_password_fits_bcrypt(cls, value: str) -> str:
        if not value or len(value.encode("utf-8")) > 72:
            raise ValueError("ADMIN_PASSWORD must be 1 to 72 bytes")
        return value


settings = Settings()
