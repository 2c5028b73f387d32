from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

ALLOWED_REFRESH_INTERVALS = (3, 5, 10)
NOTIFY_BEFORE_CHOICES = (1, 3, 5, 10, 15)

_CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Core
    ENVIRONMENT: str = Field(default="production")
    LOG_LEVEL: str = Field(default="INFO")

    # Upstream hospital API (consumed, not controlled)
    UPSTREAM_BASE_URL: str = Field(default="https://www.skh.org.tw/regis_api")
    UPSTREAM_LANDING_URL: str = Field(default="https://www.skh.org.tw/skh/index.html")
    UPSTREAM_REFERER: str = Field(default="https://www.skh.org.tw/registration/registration.aspx")
    UPSTREAM_ORIGIN: str = Field(default="https://www.skh.org.tw")
    UPSTREAM_USER_AGENT: str = Field(default=_CHROME_UA)
    UPSTREAM_ACCEPT_LANGUAGE: str = Field(default="zh-TW,zh;q=0.9,en-US;q=0.8,en;q=0.7")
    UPSTREAM_TIMEOUT_S: float = Field(default=10.0)

    # Watch session defaults
    DEFAULT_REFRESH_INTERVAL_S: int = Field(default=5)
    DEFAULT_AUTO_REFRESH: bool = Field(default=True)
    DEFAULT_NOTIFY_BEFORE: int = Field(default=5)

    # Alert delivery
    NOTIFIER_CHANNEL: str = Field(default="console")  # console | log | telegram
    ALERT_TITLE: str = Field(default="新光醫院到號通知")
    TELEGRAM_BOT_TOKEN: str = Field(default="")
    TELEGRAM_CHAT_ID: str = Field(default="")


settings = Settings()
