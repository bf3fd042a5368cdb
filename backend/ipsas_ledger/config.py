from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://ledger_admin:ledger_secret@db:5432/ledger_db"
    DATABASE_ECHO: bool = False
    AUTO_CREATE_TABLES: bool = True
    JWT_SECRET: str = "ipsas-ledger-jwt-secret-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_MINUTES: int = 480
    AUTH_TOKEN_URL: str = "/api/auth/token"
    AUDIT_ENABLED: bool = True
    AUDIT_STORAGE_PATH: str = "./audit_storage"
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]
    DEFAULT_FISCAL_YEAR_END: str = "12-31"
    TRANSACTION_NUMBER_PREFIX: str = "GL"

    class Config:
        env_file = ".env"


settings = Settings()
