from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_env: str = "dev"
    auth_mode: str = "forwardauth"  # forwardauth | dev
    internal_admin_token: str = "change-me"
    root_path: str = ""
    log_level: str = "INFO"

    postgres_db: str = "family_grocery"
    postgres_user: str = "family_grocery_user"
    postgres_password: str = "family_grocery_pass"
    postgres_host: str = "db"
    postgres_port: int = 5432
    redis_host: str = "redis"
    redis_port: int = 6379

    # memory | redis
    realtime_backend: str = "memory"

    # Keycloak (identity lookups for member email backfill)
    keycloak_base_url: str = "http://keycloak:8080"
    keycloak_realm: str = "familycloud"
    keycloak_client_id: str = "family-grocery-api"
    keycloak_client_secret: str = ""

    # Transactional email (Loops)
    loops_api_key: str = ""
    loops_api_url: str = "https://app.loops.so/api/v1/transactional"
    loops_invitation_transactional_id: str = "family-invitation"
    app_base_url: str = "http://localhost:3000"
    email_max_attempts: int = 3
    email_retry_backoff_seconds: float = 0.5

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )


settings = Settings()
