from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./nyx.db"
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # auth
    secret_key: str = "change-me"
    session_ttl_days: int = 7
    password_hash_iterations: int = 240_000
    cookie_name: str = "nyx_session"
    app_url: str = "http://localhost:5173"
    public_base_url: str = "http://localhost:8000"
    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_redirect_uri: str | None = None
    google_auth_url: str = "https://accounts.google.com/o/oauth2/v2/auth"
    google_token_url: str = "https://oauth2.googleapis.com/token"
    google_userinfo_url: str = "https://openidconnect.googleapis.com/v1/userinfo"

    # uploads
    storage_dir: str = "./uploads"
    max_upload_bytes: int = 10 * 1024 * 1024
    upload_url_ttl_seconds: int = 3600

    # client state and rest timer
    state_file: str = "client_state.json"
    default_rest_timer_seconds: int = 180
    push_webhook_url: str | None = None

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    return Settings()
