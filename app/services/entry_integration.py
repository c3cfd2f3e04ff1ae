"""
エントリー連携 - エントリー作成時の通知ログ更新と追いリマインドのキャンセル

通知まわりの後処理が失敗しても、エントリー作成そのものは失敗させません。
"""
import asyncio
from datetime import datetime
from typing import Any, Awaitable, Optional
from app.models.notification import EntryCreatedEvent, EntryIntegrationResult
from app.services.errors import NotificationValidationError, UnexpectedNotificationError
from app.services.followup_service import FollowUpScheduler
from app.services.notification_log_service import NotificationLogService
import logging

logger = logging.getLogger(__name__)


async def _succeeded(label: str, user_id: str, operation: Awaitable[Any]) -> bool:
    try:
        await operation
        return True
    except Exception as e:
        logger.error(f"Entry integration step failed ({label}): user={user_id} error={e}")
        return False


class EntryIntegrationService:
    """エントリー作成フック"""

    def __init__(self, log_service: NotificationLogService, scheduler: FollowUpScheduler):
        self.log_service = log_service
        self.scheduler = scheduler

    @staticmethod
    def _validate(event: EntryCreatedEvent) -> None:
        if not event.user_id or not event.user_id.strip():
            raise NotificationValidationError("user_id is required")
        if not event.entry_id or not event.entry_id.strip():
            raise NotificationValidationError("entry_id is required")
        if not isinstance(event.created_at, datetime):
            raise NotificationValidationError("created_at must be a valid datetime")

    async def handle_entry_created(self, event: EntryCreatedEvent) -> EntryIntegrationResult:
        """
        エントリー作成時の通知連携処理

        ログ更新と追いリマインドのキャンセルを並行に実行します。
        どちらかが失敗しても例外にはせず、結果のフラグで返します。

        Args:
            event: エントリー作成イベント

        Returns:
            各処理の成否

        Raises:
            NotificationValidationError: イベントの値が不正（後続処理は実行しない）
            UnexpectedNotificationError: 予期せぬエラー
        """
        self._validate(event)

        try:
            log_updated, follow_ups_cancelled = await asyncio.gather(
                _succeeded(
                    "update_entry_recorded",
                    event.user_id,
                    self.log_service.update_entry_recorded(event.user_id, event.created_at),
                ),
                _succeeded(
                    "cancel_follow_ups",
                    event.user_id,
                    self.scheduler.cancel_follow_ups(event.user_id, event.created_at),
                ),
            )
        except Exception as e:
            logger.error(f"Entry integration failed: user={event.user_id} entry={event.entry_id} error={e}")
            raise UnexpectedNotificationError(str(e)) from e

        logger.info(
            f"Entry integration completed: user={event.user_id} entry={event.entry_id} "
            f"log_updated={log_updated} follow_ups_cancelled={follow_ups_cancelled}"
        )
        return EntryIntegrationResult(log_updated=log_updated, follow_ups_cancelled=follow_ups_cancelled)


_entry_integration_service: Optional[EntryIntegrationService] = None


def get_entry_integration_service() -> EntryIntegrationService:
    """EntryIntegrationServiceのシングルトンインスタンスを取得"""
    global _entry_integration_service
    if _entry_integration_service is None:
        from app.services.followup_service import get_follow_up_scheduler
        from app.services.notification_log_service import get_notification_log_service
        _entry_integration_service = EntryIntegrationService(
            log_service=get_notification_log_service(),
            scheduler=get_follow_up_scheduler(),
        )
    return _entry_integration_service
