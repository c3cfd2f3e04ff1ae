"""
通知ログサービス - 通知送信ログの記録とエントリー記録時刻の反映
"""
from datetime import datetime
from typing import Optional
from app.models.notification import NotificationLog, NotificationResult, NotificationType
from app.services.followup_service import resolve_user_timezone
from app.services.ports import LogStore, SettingsStore
from app.services import timezone_clock
import logging

logger = logging.getLogger(__name__)


class NotificationLogService:
    """通知送信ログ"""

    def __init__(self, log_store: LogStore, settings_store: SettingsStore):
        self.log_store = log_store
        self.settings_store = settings_store

    async def log_notification(
        self,
        user_id: str,
        notification_type: NotificationType,
        result: NotificationResult,
        sent_at: Optional[datetime] = None,
        error_message: Optional[str] = None,
    ) -> NotificationLog:
        """
        通知送信ログを記録する

        Raises:
            DatabaseError: ログの書き込み失敗
        """
        sent_at = timezone_clock.as_utc(sent_at) if sent_at else timezone_clock.utcnow()
        log = await self.log_store.append_log(user_id, notification_type, result, sent_at, error_message)
        logger.debug(f"Notification logged: user={user_id} type={notification_type.value} result={result.value}")
        return log

    async def update_entry_recorded(
        self,
        user_id: str,
        entry_created_at: datetime,
        timezone: Optional[str] = None,
    ) -> int:
        """
        その日の通知ログにエントリー記録時刻を反映する

        ユーザーのローカル日付で当日の範囲を求め、entry_recorded_at が未設定のログのみ更新します。

        Args:
            user_id: ユーザーID
            entry_created_at: エントリー作成時刻
            timezone: 日付判定に使うタイムゾーン（省略時はユーザー設定）

        Returns:
            更新したログの件数

        Raises:
            DatabaseError: ログの更新失敗
        """
        entry_created_at = timezone_clock.as_utc(entry_created_at)
        tz = await resolve_user_timezone(self.settings_store, user_id, timezone)
        bounds = timezone_clock.day_boundaries(tz, entry_created_at)
        updated = await self.log_store.update_entry_recorded_at(
            user_id, entry_created_at, bounds.start_of_day, bounds.end_of_day
        )
        logger.info(f"Entry recorded on {updated} notification log(s): user={user_id}")
        return updated


_notification_log_service: Optional[NotificationLogService] = None


def get_notification_log_service() -> NotificationLogService:
    """NotificationLogServiceのシングルトンインスタンスを取得"""
    global _notification_log_service
    if _notification_log_service is None:
        from app.services.notification_store import SqlLogStore, SqlSettingsStore
        _notification_log_service = NotificationLogService(SqlLogStore(), SqlSettingsStore())
    return _notification_log_service
