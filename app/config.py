from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    # Database (defaults to SQLite for local dev)
    DATABASE_URL: str = "sqlite:///./notifications.db"

    # Web Push (VAPID)
    VAPID_PUBLIC_KEY: str = ""
    VAPID_PRIVATE_KEY: str = ""
    VAPID_SUBJECT: str = "mailto:support@hibioru.app"
    PUSH_TTL_SECONDS: int = 60 * 60 * 12
    PUSH_TIMEOUT_SECONDS: int = 10

    # 通知設定が存在しないユーザーの日付判定に使うタイムゾーン
    DEFAULT_TIMEZONE: str = "UTC"

    # リマインダーバッチ
    REMINDER_BATCH_CONCURRENCY: int = 10

    # 通知ペイロード
    NOTIFICATION_TITLE: str = "ヒビオル"
    NOTIFICATION_ICON: str = "/icon-192.png"
    NOTIFICATION_BADGE: str = "/badge-72.png"
    NOTIFICATION_URL: str = "/"

    # Application
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"
    LOG_LEVEL: str = "INFO"

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]


settings = Settings()
