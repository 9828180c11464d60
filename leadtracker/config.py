from pydantic_settings import BaseSettings

PRODUCTION_BROWSER_EXECUTABLE = "/usr/bin/chromium-browser"
PRODUCTION_SESSION_DIR = "/tmp/.wa_session"
DEVELOPMENT_SESSION_DIR = ".wa_session"


class Settings(BaseSettings):
    environment: str = "development"
    port: int = 3000
    log_level: str = "INFO"

    # Storage
    leads_file: str = "leads.json"
    products_file: str = "config/products.json"

    # Browser: empty values are derived from the environment flag
    session_dir: str = ""
    browser_executable: str = ""
    headless: bool = True

    # Connection supervisor
    whatsapp_autostart: bool = True
    init_timeout_seconds: float = 60.0
    qr_timeout_seconds: float = 40.0
    auth_retry_delay: float = 5.0  # auth failure / disconnect
    error_retry_delay: float = 8.0  # client error event
    exception_retry_delay: float = 15.0  # initialization exception / timeout
    poll_interval_seconds: float = 5.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def resolved_session_dir(self) -> str:
        if self.session_dir:
            return self.session_dir
        return PRODUCTION_SESSION_DIR if self.is_production else DEVELOPMENT_SESSION_DIR

    @property
    def resolved_browser_executable(self) -> str | None:
        if self.browser_executable:
            return self.browser_executable
        return PRODUCTION_BROWSER_EXECUTABLE if self.is_production else None


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Force reload settings from .env (called on module reload by uvicorn --reload)."""
    global _settings
    _settings = None
    return get_settings()
