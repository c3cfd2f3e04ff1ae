"""
追いリマインドスケジューラのテスト

Asia/Tokyo・21:00・60分間隔・最大2回の設定を基本に、送信判定の優先順位を確認します。
"""
import pytest
from datetime import date, datetime, timezone
from app.models.notification import FollowUpSkipReason, NotificationType
from app.services.errors import DatabaseError, SettingsNotFoundError

USER_ID = "user-1"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def tokyo_user(settings_store):
    return settings_store.put(
        user_id=USER_ID,
        enabled=True,
        primary_time="21:00",
        timezone="Asia/Tokyo",
        follow_up_enabled=True,
        follow_up_interval_minutes=60,
        follow_up_max_count=2,
    )


class TestShouldSendFollowUp:
    """送信判定"""

    @pytest.mark.asyncio
    async def test_disabled(self, scheduler, settings_store):
        """追いリマインド無効の場合は disabled"""
        settings_store.put(user_id=USER_ID, follow_up_enabled=False)

        decision = await scheduler.should_send_follow_up(USER_ID, utc(2025, 12, 18, 13, 30))

        assert decision.should_send is False
        assert decision.follow_up_count == 0
        assert decision.reason == FollowUpSkipReason.DISABLED

    @pytest.mark.asyncio
    async def test_first_follow_up_due(self, scheduler, tokyo_user):
        decision = await scheduler.should_send_follow_up(USER_ID, utc(2025, 12, 18, 13, 30))

        assert decision.should_send is True
        assert decision.follow_up_count == 1
        assert decision.reason is None

    @pytest.mark.asyncio
    async def test_exactly_at_scheduled_time_is_due(self, scheduler, tokyo_user):
        decision = await scheduler.should_send_follow_up(USER_ID, utc(2025, 12, 18, 13, 0))
        assert decision.should_send is True

    @pytest.mark.asyncio
    async def test_not_time_yet(self, scheduler, tokyo_user):
        decision = await scheduler.should_send_follow_up(USER_ID, utc(2025, 12, 18, 12, 30))

        assert decision.should_send is False
        assert decision.follow_up_count == 1
        assert decision.reason == FollowUpSkipReason.NOT_TIME_YET

    @pytest.mark.asyncio
    async def test_second_follow_up_waits_for_its_slot(self, scheduler, tokyo_user, log_store):
        """1回送信済みなら2回目の予定時刻（14:00Z）まで待つ"""
        log_store.add(USER_ID, NotificationType.MAIN_REMINDER, utc(2025, 12, 18, 12, 0))
        log_store.add(USER_ID, NotificationType.CHASE_REMINDER, utc(2025, 12, 18, 13, 0))

        waiting = await scheduler.should_send_follow_up(USER_ID, utc(2025, 12, 18, 13, 30))
        due = await scheduler.should_send_follow_up(USER_ID, utc(2025, 12, 18, 14, 5))

        assert waiting.reason == FollowUpSkipReason.NOT_TIME_YET
        assert waiting.follow_up_count == 2
        assert due.should_send is True
        assert due.follow_up_count == 2

    @pytest.mark.asyncio
    async def test_max_count_cutoff(self, scheduler, tokyo_user, log_store):
        """送信数が上限に達していれば時刻に関係なく max_count_reached"""
        log_store.add(USER_ID, NotificationType.CHASE_REMINDER, utc(2025, 12, 18, 13, 0))
        log_store.add(USER_ID, NotificationType.CHASE_REMINDER, utc(2025, 12, 18, 14, 0))

        decision = await scheduler.should_send_follow_up(USER_ID, utc(2025, 12, 18, 14, 59))

        assert decision.should_send is False
        assert decision.follow_up_count == 2
        assert decision.reason == FollowUpSkipReason.MAX_COUNT_REACHED

    @pytest.mark.asyncio
    async def test_zero_max_count(self, scheduler, settings_store):
        settings_store.put(user_id=USER_ID, timezone="Asia/Tokyo", follow_up_max_count=0)

        decision = await scheduler.should_send_follow_up(USER_ID, utc(2025, 12, 18, 14))

        assert decision.reason == FollowUpSkipReason.MAX_COUNT_REACHED
        assert decision.follow_up_count == 0

    @pytest.mark.asyncio
    async def test_max_count_takes_precedence_over_recorded(self, scheduler, tokyo_user, log_store, entry_store):
        log_store.add(USER_ID, NotificationType.CHASE_REMINDER, utc(2025, 12, 18, 13, 0))
        log_store.add(USER_ID, NotificationType.CHASE_REMINDER, utc(2025, 12, 18, 14, 0))
        entry_store.add(USER_ID, utc(2025, 12, 18, 14, 10))

        decision = await scheduler.should_send_follow_up(USER_ID, utc(2025, 12, 18, 14, 30))

        assert decision.reason == FollowUpSkipReason.MAX_COUNT_REACHED

    @pytest.mark.asyncio
    async def test_already_recorded_even_when_due(self, scheduler, tokyo_user, entry_store):
        """当日のエントリーがあれば予定時刻を過ぎていても already_recorded"""
        entry_store.add(USER_ID, utc(2025, 12, 18, 12, 10))

        decision = await scheduler.should_send_follow_up(USER_ID, utc(2025, 12, 18, 13, 30))

        assert decision.should_send is False
        assert decision.follow_up_count == 0
        assert decision.reason == FollowUpSkipReason.ALREADY_RECORDED

    @pytest.mark.asyncio
    async def test_deleted_entry_is_ignored(self, scheduler, tokyo_user, entry_store):
        entry_store.add(USER_ID, utc(2025, 12, 18, 12, 10), is_deleted=True)

        decision = await scheduler.should_send_follow_up(USER_ID, utc(2025, 12, 18, 13, 30))

        assert decision.should_send is True

    @pytest.mark.asyncio
    async def test_entry_on_previous_local_day_is_ignored(self, scheduler, tokyo_user, entry_store):
        # 2025-12-17T14:00Z は Tokyo で 12-17 23:00
        entry_store.add(USER_ID, utc(2025, 12, 17, 14, 0))

        decision = await scheduler.should_send_follow_up(USER_ID, utc(2025, 12, 18, 13, 30))

        assert decision.should_send is True

    @pytest.mark.asyncio
    async def test_logs_from_previous_day_are_not_counted(self, scheduler, tokyo_user, log_store):
        log_store.add(USER_ID, NotificationType.CHASE_REMINDER, utc(2025, 12, 17, 13, 0))
        log_store.add(USER_ID, NotificationType.CHASE_REMINDER, utc(2025, 12, 17, 14, 0))

        decision = await scheduler.should_send_follow_up(USER_ID, utc(2025, 12, 18, 13, 30))

        assert decision.should_send is True
        assert decision.follow_up_count == 1

    @pytest.mark.asyncio
    async def test_cancellation_ledger_is_not_consulted(self, scheduler, tokyo_user):
        """キャンセル台帳は送信判定に影響しない（記録済み判定が実質的な抑止）"""
        await scheduler.cancel_follow_ups(USER_ID, utc(2025, 12, 18, 10))

        decision = await scheduler.should_send_follow_up(USER_ID, utc(2025, 12, 18, 13, 30))

        assert decision.should_send is True

    @pytest.mark.asyncio
    async def test_settings_not_found(self, scheduler):
        with pytest.raises(SettingsNotFoundError) as exc_info:
            await scheduler.should_send_follow_up("unknown", utc(2025, 12, 18, 13))
        assert exc_info.value.error_type.value == "SETTINGS_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_storage_failure_is_database_error(self, scheduler, settings_store):
        settings_store.fail = True

        with pytest.raises(DatabaseError):
            await scheduler.should_send_follow_up(USER_ID, utc(2025, 12, 18, 13))


class TestGetNextFollowUpTime:
    """次の追いリマインド時刻"""

    @pytest.mark.asyncio
    async def test_returns_first_slot(self, scheduler, tokyo_user):
        result = await scheduler.get_next_follow_up_time(USER_ID, utc(2025, 12, 18, 12, 30))
        assert result == utc(2025, 12, 18, 13, 0)

    @pytest.mark.asyncio
    async def test_returns_second_slot_after_one_sent(self, scheduler, tokyo_user, log_store):
        log_store.add(USER_ID, NotificationType.CHASE_REMINDER, utc(2025, 12, 18, 13, 0))

        result = await scheduler.get_next_follow_up_time(USER_ID, utc(2025, 12, 18, 13, 10))

        assert result == utc(2025, 12, 18, 14, 0)

    @pytest.mark.asyncio
    async def test_none_when_recorded(self, scheduler, tokyo_user, entry_store):
        entry_store.add(USER_ID, utc(2025, 12, 18, 12, 10))
        assert await scheduler.get_next_follow_up_time(USER_ID, utc(2025, 12, 18, 12, 30)) is None

    @pytest.mark.asyncio
    async def test_none_when_maxed_out(self, scheduler, tokyo_user, log_store):
        log_store.add(USER_ID, NotificationType.CHASE_REMINDER, utc(2025, 12, 18, 13, 0))
        log_store.add(USER_ID, NotificationType.CHASE_REMINDER, utc(2025, 12, 18, 14, 0))
        assert await scheduler.get_next_follow_up_time(USER_ID, utc(2025, 12, 18, 14, 30)) is None

    @pytest.mark.asyncio
    async def test_none_when_disabled(self, scheduler, settings_store):
        settings_store.put(user_id=USER_ID, follow_up_enabled=False)
        assert await scheduler.get_next_follow_up_time(USER_ID, utc(2025, 12, 18, 12, 30)) is None


class TestCancelFollowUps:
    """追いリマインドのキャンセル"""

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, scheduler, tokyo_user, ledger):
        """2回続けてキャンセルしても成功し、台帳のエントリーは1件"""
        first = await scheduler.cancel_follow_ups(USER_ID, utc(2025, 12, 18, 10))
        second = await scheduler.cancel_follow_ups(USER_ID, utc(2025, 12, 18, 11))

        assert first == second == "2025-12-18"
        assert ledger.entries == {(USER_ID, date(2025, 12, 18))}

    @pytest.mark.asyncio
    async def test_uses_user_timezone_for_date(self, scheduler, tokyo_user, ledger):
        # 2025-12-17T16:00Z は Tokyo で 12-18 01:00
        day = await scheduler.cancel_follow_ups(USER_ID, utc(2025, 12, 17, 16, 0))
        assert day == "2025-12-18"

    @pytest.mark.asyncio
    async def test_falls_back_to_default_timezone_without_settings(self, scheduler, ledger):
        day = await scheduler.cancel_follow_ups("no-settings", utc(2025, 12, 17, 16, 0))
        assert day == "2025-12-17"

    @pytest.mark.asyncio
    async def test_is_follow_up_cancelled(self, scheduler, tokyo_user):
        assert await scheduler.is_follow_up_cancelled(USER_ID, utc(2025, 12, 18, 10)) is False

        await scheduler.cancel_follow_ups(USER_ID, utc(2025, 12, 18, 10))

        assert await scheduler.is_follow_up_cancelled(USER_ID, utc(2025, 12, 18, 12)) is True
        assert await scheduler.is_follow_up_cancelled(USER_ID, utc(2025, 12, 19, 12)) is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
