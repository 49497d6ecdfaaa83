from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "fortify-bridge"
    app_env: str = "development"

    database_url: str = "sqlite:///./fortify_bridge.sqlite"

    # JWT (bearer tokens handed to API clients)
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 60
    JWT_REMEMBER_EXPIRE_MINUTES: int = 60 * 24 * 30

    # Two-factor authentication
    TWO_FACTOR_ENCRYPTION_KEY: str = ""  # base64, 32 bytes
    TWO_FACTOR_ISSUER: str = ""
    TWO_FACTOR_WINDOW: int = 1
    TWO_FACTOR_RECOVERY_CODES: int = 8
    TWO_FACTOR_CHALLENGE_TTL: int = 300

    # Step-up re-authentication window, seconds
    PASSWORD_TIMEOUT: int = 10800

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def two_factor_issuer(self) -> str:
        return self.TWO_FACTOR_ISSUER or self.app_name


settings = Settings()
