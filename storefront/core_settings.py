from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "storefront"
    POSTGRES_USER: str = "storefront"
    POSTGRES_PASSWORD: str = "storefront"
    # Full SQLAlchemy URL; takes precedence over the POSTGRES_* parts
    DATABASE_URL: Optional[str] = None

    SERVICE_NAME: str = "storefront-orders"
    SERVICE_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    RUN_MIGRATIONS: bool = False
    CORS_ORIGINS: str = "*"
    REDIS_URL: Optional[str] = None

    # Seconds a contact number / network address must wait between orders
    ORDER_COOLDOWN_SECONDS: int = 60

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

@lru_cache
def get_settings() -> Settings:
    return Settings()
