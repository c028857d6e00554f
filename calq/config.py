from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    write_key: str = ""
    api_host: str = "api.calq.io"
    use_secure: bool = False
    max_queue_size: int = 100
    max_retries: int = 5
    connect_timeout_seconds: float = 5.0
    timeout_seconds: float = 15.0
    cookie_name: str = "_calq_d"
    cookie_domain: Optional[str] = None  # None = host-only cookie
    cookie_expires_days: int = 180
    log_level: str = "INFO"

    class Config:
        env_prefix = "CALQ_"


settings = Settings()
