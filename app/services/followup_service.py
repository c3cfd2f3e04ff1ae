"""
追いリマインドスケジューラ - 追いリマインドの送信判定とキャンセル管理

状態は永続化せず、呼び出しごとに通知設定・当日の送信ログ・当日の記録有無から
再構築します。複数ワーカーから同時に呼び出してもメモリ上の調整は不要です。
"""
from datetime import datetime
from typing import List, Optional
from app.config import settings as app_settings
from app.models.notification import (
    FollowUpDecision,
    FollowUpSkipReason,
    NotificationLog,
    NotificationSettings,
    NotificationType,
)
from app.services.errors import SettingsNotFoundError
from app.services.followup_schedule import compute_schedule
from app.services.ports import CancellationLedger, EntryStore, LogStore, SettingsStore
from app.services import timezone_clock
import logging

logger = logging.getLogger(__name__)


def count_chase_reminders(logs: List[NotificationLog]) -> int:
    """当日の送信ログから追いリマインドの送信回数を数える"""
    return sum(1 for log in logs if log.type == NotificationType.CHASE_REMINDER)


async def resolve_user_timezone(
    settings_store: SettingsStore, user_id: str, timezone: Optional[str] = None
) -> str:
    """
    日付判定に使うタイムゾーンを決定する

    明示指定 > ユーザーの通知設定 > DEFAULT_TIMEZONE の順で採用します。
    """
    if timezone:
        return timezone
    user_settings = await settings_store.get_settings(user_id)
    if user_settings is None:
        return app_settings.DEFAULT_TIMEZONE
    return user_settings.timezone


class FollowUpScheduler:
    """追いリマインドの送信判定・キャンセル台帳"""

    def __init__(
        self,
        settings_store: SettingsStore,
        log_store: LogStore,
        entry_store: EntryStore,
        ledger: CancellationLedger,
    ):
        self.settings_store = settings_store
        self.log_store = log_store
        self.entry_store = entry_store
        self.ledger = ledger

    async def _load_settings(self, user_id: str) -> NotificationSettings:
        user_settings = await self.settings_store.get_settings(user_id)
        if user_settings is None:
            raise SettingsNotFoundError(user_id)
        return user_settings

    async def should_send_follow_up(
        self, user_id: str, now: Optional[datetime] = None
    ) -> FollowUpDecision:
        """
        追いリマインドを送信すべきか判定する

        判定順（最初に該当したものを採用）:
        1. 追いリマインド無効 → disabled
        2. 当日の追いリマインド送信数が上限以上 → max_count_reached
        3. 当日のエントリーあり → already_recorded
        4. 次の予定枠がない → max_count_reached
        5. 予定時刻前 → not_time_yet
        6. それ以外 → 送信

        Args:
            user_id: ユーザーID
            now: 現在時刻（デフォルト: 現在のUTC時刻）

        Returns:
            送信判定結果

        Raises:
            SettingsNotFoundError: 通知設定が存在しない
            DatabaseError: ストレージの読み込み失敗
            ConfigurationError: タイムゾーン・時刻設定が不正
        """
        now = timezone_clock.as_utc(now) if now else timezone_clock.utcnow()
        user_settings = await self._load_settings(user_id)

        if not user_settings.follow_up_enabled:
            return FollowUpDecision(
                should_send=False, follow_up_count=0, reason=FollowUpSkipReason.DISABLED
            )

        bounds = timezone_clock.day_boundaries(user_settings.timezone, now)
        logs = await self.log_store.get_logs_for_range(user_id, bounds.start_of_day, bounds.end_of_day)
        chase_sent_count = count_chase_reminders(logs)

        if chase_sent_count >= user_settings.follow_up_max_count:
            return FollowUpDecision(
                should_send=False,
                follow_up_count=chase_sent_count,
                reason=FollowUpSkipReason.MAX_COUNT_REACHED,
            )

        if await self.entry_store.exists_non_deleted_in_range(
            user_id, bounds.start_of_day, bounds.end_of_day
        ):
            return FollowUpDecision(
                should_send=False,
                follow_up_count=chase_sent_count,
                reason=FollowUpSkipReason.ALREADY_RECORDED,
            )

        schedule = compute_schedule(
            user_settings.primary_time,
            user_settings.follow_up_interval_minutes,
            user_settings.follow_up_max_count,
            user_settings.timezone,
            now,
        )
        if chase_sent_count >= len(schedule.follow_up_times):
            return FollowUpDecision(
                should_send=False,
                follow_up_count=chase_sent_count,
                reason=FollowUpSkipReason.MAX_COUNT_REACHED,
            )

        next_follow_up = schedule.follow_up_times[chase_sent_count]
        if now < next_follow_up.scheduled_time:
            return FollowUpDecision(
                should_send=False,
                follow_up_count=chase_sent_count + 1,
                reason=FollowUpSkipReason.NOT_TIME_YET,
            )

        return FollowUpDecision(should_send=True, follow_up_count=chase_sent_count + 1)

    async def get_next_follow_up_time(
        self, user_id: str, now: Optional[datetime] = None
    ) -> Optional[datetime]:
        """
        次の追いリマインド時刻を取得する

        追いリマインド無効・上限到達・記録済みの場合はNoneを返します。
        """
        now = timezone_clock.as_utc(now) if now else timezone_clock.utcnow()
        user_settings = await self._load_settings(user_id)

        if not user_settings.follow_up_enabled:
            return None

        bounds = timezone_clock.day_boundaries(user_settings.timezone, now)
        logs = await self.log_store.get_logs_for_range(user_id, bounds.start_of_day, bounds.end_of_day)
        chase_sent_count = count_chase_reminders(logs)

        if chase_sent_count >= user_settings.follow_up_max_count:
            return None

        if await self.entry_store.exists_non_deleted_in_range(
            user_id, bounds.start_of_day, bounds.end_of_day
        ):
            return None

        schedule = compute_schedule(
            user_settings.primary_time,
            user_settings.follow_up_interval_minutes,
            user_settings.follow_up_max_count,
            user_settings.timezone,
            now,
        )
        if chase_sent_count >= len(schedule.follow_up_times):
            return None
        return schedule.follow_up_times[chase_sent_count].scheduled_time

    async def cancel_follow_ups(
        self,
        user_id: str,
        target_date: Optional[datetime] = None,
        timezone: Optional[str] = None,
    ) -> str:
        """
        指定日の追いリマインドをキャンセルする

        (user_id, ローカル日付) で台帳に記録します。既にキャンセル済みでも成功です。

        Returns:
            キャンセル対象の日付（YYYY-MM-DD）

        Raises:
            DatabaseError: 台帳への書き込み失敗
        """
        target_date = timezone_clock.as_utc(target_date) if target_date else timezone_clock.utcnow()
        tz = await resolve_user_timezone(self.settings_store, user_id, timezone)
        day = timezone_clock.local_date(tz, target_date)

        inserted = await self.ledger.insert_if_absent(user_id, day)
        if inserted:
            logger.info(f"Follow-ups cancelled: user={user_id} date={day.isoformat()}")
        return day.isoformat()

    async def is_follow_up_cancelled(
        self,
        user_id: str,
        target_date: Optional[datetime] = None,
        timezone: Optional[str] = None,
    ) -> bool:
        """指定日の追いリマインドがキャンセルされているか"""
        target_date = timezone_clock.as_utc(target_date) if target_date else timezone_clock.utcnow()
        tz = await resolve_user_timezone(self.settings_store, user_id, timezone)
        return await self.ledger.exists(user_id, timezone_clock.local_date(tz, target_date))


_follow_up_scheduler: Optional[FollowUpScheduler] = None


def get_follow_up_scheduler() -> FollowUpScheduler:
    """FollowUpSchedulerのシングルトンインスタンスを取得"""
    global _follow_up_scheduler
    if _follow_up_scheduler is None:
        from app.services.notification_store import (
            SqlCancellationLedger,
            SqlEntryStore,
            SqlLogStore,
            SqlSettingsStore,
        )
        _follow_up_scheduler = FollowUpScheduler(
            settings_store=SqlSettingsStore(),
            log_store=SqlLogStore(),
            entry_store=SqlEntryStore(),
            ledger=SqlCancellationLedger(),
        )
    return _follow_up_scheduler
