"""
追いリマインドのスケジュール計算

DBアクセスを行わない純粋関数です。同じ入力には常に同じ結果を返します。
"""
from datetime import datetime, time, timedelta
from typing import Tuple
from app.models.notification import FollowUpTime, NotificationType, Schedule
from app.services.errors import ConfigurationError
from app.services import timezone_clock


def parse_primary_time(primary_time: str) -> Tuple[int, int]:
    """
    "HH:mm" 形式の時刻を (時, 分) に分解する

    Raises:
        ConfigurationError: 24時間表記として不正な場合
    """
    try:
        hours_str, minutes_str = primary_time.split(":")[:2]
        hours, minutes = int(hours_str), int(minutes_str)
    except (AttributeError, ValueError) as e:
        raise ConfigurationError(f"Invalid primary time: {primary_time!r}") from e
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ConfigurationError(f"Invalid primary time: {primary_time!r}")
    return hours, minutes


def compute_primary_timestamp(primary_time: str, timezone: str, reference: datetime) -> datetime:
    """referenceのローカル日付におけるprimary_timeをUTCで返す"""
    hours, minutes = parse_primary_time(primary_time)
    day = timezone_clock.local_date(timezone, reference)
    return timezone_clock.local_to_utc(timezone, day, time(hours, minutes))


def compute_schedule(
    primary_time: str,
    interval_minutes: int,
    max_count: int,
    timezone: str,
    reference: datetime,
) -> Schedule:
    """
    primaryTimeから追いリマインドのスケジュールを計算する

    例: Asia/Tokyo, 21:00, 60分間隔, 2回 → 12:00Z（メイン）, 13:00Z, 14:00Z

    Args:
        primary_time: メインリマインド時刻（HH:mm形式）
        interval_minutes: 追いリマインドの間隔（分）
        max_count: 追いリマインドの最大回数（0なら追いリマインドなし）
        timezone: タイムゾーン（IANA形式）
        reference: 基準日時

    Returns:
        追いリマインドスケジュール

    Raises:
        ConfigurationError: 時刻・間隔・回数・タイムゾーンが不正な場合
    """
    if interval_minutes <= 0:
        raise ConfigurationError(f"interval_minutes must be positive: {interval_minutes}")
    if max_count < 0:
        raise ConfigurationError(f"max_count must not be negative: {max_count}")

    primary_timestamp = compute_primary_timestamp(primary_time, timezone, reference)
    follow_up_times = [
        FollowUpTime(
            follow_up_number=number,
            scheduled_time=primary_timestamp + timedelta(minutes=interval_minutes * number),
            notification_type=NotificationType.CHASE_REMINDER,
        )
        for number in range(1, max_count + 1)
    ]
    return Schedule(primary_timestamp=primary_timestamp, follow_up_times=follow_up_times)
