"""
通知サービス - リマインド通知のビジネスロジック

メインリマインドの配信（記録済みならスキップ）、追いリマインドの配信、
1分ごとに外部から起動されるリマインダーバッチを担当します。
送信ログの書き込みはベストエフォートで、失敗しても呼び出し側には返しません。
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type
)
from app.config import settings
from app.models.notification import (
    DispatchResponse,
    FollowUpSkipReason,
    NotificationPayload,
    NotificationResult,
    NotificationSettings,
    NotificationType,
    ReminderBatchResponse,
)
from app.services.errors import DatabaseError, NoSubscriptionsError, NotificationError
from app.services.followup_service import FollowUpScheduler
from app.services.notification_log_service import NotificationLogService
from app.services.notification_messages import build_payload
from app.services.notification_sender import NotificationDispatcher, is_time_to_send_notification
from app.services.ports import EntryStore, LogStore, SettingsStore
from app.services import timezone_clock
import logging

logger = logging.getLogger(__name__)


@dataclass
class _BatchStats:
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


class NotificationService:
    """リマインド通知サービス"""

    def __init__(
        self,
        settings_store: SettingsStore,
        log_store: LogStore,
        entry_store: EntryStore,
        dispatcher: NotificationDispatcher,
        scheduler: FollowUpScheduler,
        log_service: NotificationLogService,
    ):
        self.settings_store = settings_store
        self.log_store = log_store
        self.entry_store = entry_store
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self.log_service = log_service

    async def should_skip_notification(
        self, user_id: str, now: datetime, timezone: str
    ) -> bool:
        """当日（ユーザーのローカル日付）に削除されていないエントリーがあればTrue"""
        bounds = timezone_clock.day_boundaries(timezone, now)
        return await self.entry_store.exists_non_deleted_in_range(
            user_id, bounds.start_of_day, bounds.end_of_day
        )

    async def _log_best_effort(
        self,
        user_id: str,
        notification_type: NotificationType,
        result: NotificationResult,
        sent_at: datetime,
        error_message: Optional[str] = None,
    ) -> None:
        try:
            await self.log_service.log_notification(user_id, notification_type, result, sent_at, error_message)
        except Exception as e:
            logger.error(f"Failed to write notification log: user={user_id} type={notification_type.value} error={e}")

    async def dispatch_main_notification(
        self,
        user_id: str,
        payload: NotificationPayload,
        timezone: str,
        now: Optional[datetime] = None,
    ) -> DispatchResponse:
        """
        メインリマインドを配信する

        当日すでに記録がある場合は送信せず skipped を記録します。

        Args:
            user_id: ユーザーID
            payload: 通知ペイロード
            timezone: 日付判定に使うタイムゾーン
            now: 現在時刻（デフォルト: 現在のUTC時刻）

        Returns:
            配信結果（スキップした場合は skipped=True）

        Raises:
            DatabaseError: エントリーの確認・購読情報の読み込み失敗
            ConfigurationError: タイムゾーンが不正
            DispatchError: 配信失敗（VapidError / NoSubscriptionsError / AllDevicesFailedError）
        """
        now = timezone_clock.as_utc(now) if now else timezone_clock.utcnow()

        if await self.should_skip_notification(user_id, now, timezone):
            logger.info(f"Main reminder skipped (already recorded): user={user_id}")
            await self._log_best_effort(user_id, NotificationType.MAIN_REMINDER, NotificationResult.SKIPPED, now)
            return DispatchResponse(skipped=True)

        try:
            results = await self.dispatcher.send_to_all_devices(user_id, payload)
        except NotificationError as e:
            await self._log_best_effort(
                user_id, NotificationType.MAIN_REMINDER, NotificationResult.FAILED, now, e.error_type.value
            )
            raise

        await self._log_best_effort(user_id, NotificationType.MAIN_REMINDER, NotificationResult.SUCCESS, now)
        return DispatchResponse(skipped=False, results=results)

    async def send_follow_up(
        self, user_id: str, follow_up_count: int, now: Optional[datetime] = None
    ) -> DispatchResponse:
        """
        追いリマインドを配信し、結果を chase_reminder として記録する

        Raises:
            DatabaseError: 購読情報の読み込み失敗
            DispatchError: 配信失敗
        """
        now = timezone_clock.as_utc(now) if now else timezone_clock.utcnow()
        payload = build_payload(NotificationType.CHASE_REMINDER, follow_up_count)

        try:
            results = await self.dispatcher.send_to_all_devices(user_id, payload)
        except NoSubscriptionsError:
            # 端末がない場合は送信回数に数えない
            raise
        except NotificationError as e:
            await self._log_best_effort(
                user_id, NotificationType.CHASE_REMINDER, NotificationResult.FAILED, now, e.error_type.value
            )
            raise

        await self._log_best_effort(user_id, NotificationType.CHASE_REMINDER, NotificationResult.SUCCESS, now)
        logger.info(f"Follow-up #{follow_up_count} sent: user={user_id}")
        return DispatchResponse(skipped=False, results=results)

    async def _already_sent_this_minute(
        self, user_id: str, notification_type: NotificationType, now: datetime
    ) -> bool:
        minute_start = now.replace(second=0, microsecond=0)
        logs = await self.log_store.get_logs_for_range(user_id, minute_start, minute_start + timedelta(minutes=1))
        return any(log.type == notification_type for log in logs)

    async def _process_main_reminder(
        self, user_settings: NotificationSettings, now: datetime, stats: _BatchStats
    ) -> None:
        user_id = user_settings.user_id
        if await self._already_sent_this_minute(user_id, NotificationType.MAIN_REMINDER, now):
            stats.skipped += 1
            return

        try:
            response = await self.dispatch_main_notification(
                user_id, build_payload(NotificationType.MAIN_REMINDER), user_settings.timezone, now
            )
        except NoSubscriptionsError:
            stats.skipped += 1
            return

        if response.skipped:
            stats.skipped += 1
        else:
            stats.sent += 1

    async def _process_chase_reminder(
        self, user_settings: NotificationSettings, now: datetime, stats: _BatchStats
    ) -> None:
        user_id = user_settings.user_id
        bounds = timezone_clock.day_boundaries(user_settings.timezone, now)
        logs = await self.log_store.get_logs_for_range(user_id, bounds.start_of_day, bounds.end_of_day)
        # メインリマインドが届いていない日（端末なし・全端末失敗を含む）は追いリマインドもしない
        if not any(
            log.type == NotificationType.MAIN_REMINDER and log.result == NotificationResult.SUCCESS
            for log in logs
        ):
            return

        decision = await self.scheduler.should_send_follow_up(user_id, now)
        if not decision.should_send:
            if decision.reason == FollowUpSkipReason.MAX_COUNT_REACHED:
                stats.skipped += 1
            return

        if await self._already_sent_this_minute(user_id, NotificationType.CHASE_REMINDER, now):
            stats.skipped += 1
            return

        try:
            await self.send_follow_up(user_id, decision.follow_up_count, now)
        except NoSubscriptionsError:
            stats.skipped += 1
            return
        stats.sent += 1

    async def _process_user(
        self, user_settings: NotificationSettings, now: datetime, stats: _BatchStats
    ) -> None:
        user_id = user_settings.user_id
        try:
            if is_time_to_send_notification(user_settings, now):
                await self._process_main_reminder(user_settings, now, stats)
            elif user_settings.follow_up_enabled:
                await self._process_chase_reminder(user_settings, now, stats)
        except NotificationError as e:
            logger.error(f"Reminder failed for user {user_id}: [{e.error_type.value}] {e.message}")
            stats.failed += 1
            stats.errors.append(f"{user_id}: {e.error_type.value}")
        except Exception as e:
            logger.error(f"Unexpected error in reminder for user {user_id}: {e}")
            stats.failed += 1
            stats.errors.append(f"{user_id}: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(DatabaseError),
        reraise=True
    )
    async def _load_enabled_settings(self) -> List[NotificationSettings]:
        return await self.settings_store.list_enabled()

    async def run_reminder_batch(self, now: Optional[datetime] = None) -> ReminderBatchResponse:
        """
        リマインダーバッチを実行する

        通知が有効な全ユーザーについて、メインリマインドの送信時刻であれば配信し、
        それ以外は追いリマインドの送信判定を行います。
        同一分内の重複送信は送信ログで防止します。ユーザー単位の失敗はバッチを止めません。

        Args:
            now: 現在時刻（デフォルト: 現在のUTC時刻）

        Returns:
            バッチ実行結果

        Raises:
            DatabaseError: 通知設定の読み込み失敗（リトライ後も失敗した場合）
        """
        now = timezone_clock.as_utc(now) if now else timezone_clock.utcnow()
        enabled_settings = await self._load_enabled_settings()

        stats = _BatchStats()
        semaphore = asyncio.Semaphore(max(1, settings.REMINDER_BATCH_CONCURRENCY))

        async def process(user_settings: NotificationSettings) -> None:
            async with semaphore:
                await self._process_user(user_settings, now, stats)

        await asyncio.gather(*(process(user_settings) for user_settings in enabled_settings))

        logger.info(
            f"Reminder batch completed: processed={len(enabled_settings)} sent={stats.sent} "
            f"skipped={stats.skipped} failed={stats.failed}"
        )
        return ReminderBatchResponse(
            processed_count=len(enabled_settings),
            sent_count=stats.sent,
            skipped_count=stats.skipped,
            failed_count=stats.failed,
            errors=stats.errors,
        )


# シングルトンインスタンス
_notification_service: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    """NotificationServiceのシングルトンインスタンスを取得"""
    global _notification_service
    if _notification_service is None:
        from app.services.followup_service import get_follow_up_scheduler
        from app.services.notification_log_service import get_notification_log_service
        from app.services.notification_sender import get_notification_dispatcher
        from app.services.notification_store import SqlEntryStore, SqlLogStore, SqlSettingsStore
        _notification_service = NotificationService(
            settings_store=SqlSettingsStore(),
            log_store=SqlLogStore(),
            entry_store=SqlEntryStore(),
            dispatcher=get_notification_dispatcher(),
            scheduler=get_follow_up_scheduler(),
            log_service=get_notification_log_service(),
        )
    return _notification_service
