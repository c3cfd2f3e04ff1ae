"""
タイムゾーン計算

UTCの時刻とIANAタイムゾーンのローカル時刻を相互に変換します。
ホストのローカルタイムゾーンには依存しません。
オフセットは時刻ごとに再計算します（夏時間のため）。
"""
from datetime import date, datetime, time, timezone as dt_timezone
from typing import NamedTuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from app.services.errors import ConfigurationError


class DayBoundaries(NamedTuple):
    """ローカル日付の開始・終了時刻（UTC）"""
    start_of_day: datetime
    end_of_day: datetime


_END_OF_DAY = time(23, 59, 59, 999000)


def get_zone(timezone: str) -> ZoneInfo:
    """
    IANAタイムゾーン名からZoneInfoを取得する

    Raises:
        ConfigurationError: 不正または未知のタイムゾーン
    """
    if not timezone or not isinstance(timezone, str):
        raise ConfigurationError(f"Invalid timezone: {timezone!r}")
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        raise ConfigurationError(f"Unknown timezone: {timezone!r}") from e


def as_utc(instant: datetime) -> datetime:
    """naiveな日時はUTCとして扱い、UTCのaware日時に揃える"""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=dt_timezone.utc)
    return instant.astimezone(dt_timezone.utc)


def utcnow() -> datetime:
    return datetime.now(dt_timezone.utc)


def to_local(timezone: str, instant: datetime) -> datetime:
    return as_utc(instant).astimezone(get_zone(timezone))


def offset_minutes(timezone: str, instant: datetime) -> int:
    """
    UTCからのオフセット（分）を取得する

    local = UTC + offset となる符号付きの値。UTCより東はプラス（JST: +540）。
    """
    offset = to_local(timezone, instant).utcoffset()
    return int(offset.total_seconds() // 60)


def local_date(timezone: str, instant: datetime) -> date:
    return to_local(timezone, instant).date()


def local_date_string(timezone: str, instant: datetime) -> str:
    """指定タイムゾーンでの日付（YYYY-MM-DD）"""
    return local_date(timezone, instant).isoformat()


def local_time_string(timezone: str, instant: datetime) -> str:
    """指定タイムゾーンでの時刻（HH:mm、ゼロ埋め）"""
    return to_local(timezone, instant).strftime("%H:%M")


def day_of_week(timezone: str, instant: datetime) -> int:
    """指定タイムゾーンでの曜日（0:日曜〜6:土曜）"""
    return to_local(timezone, instant).isoweekday() % 7


def local_to_utc(timezone: str, day: date, wall_time: time) -> datetime:
    """ローカルの日付＋時刻をUTCに変換する"""
    local = datetime.combine(day, wall_time, tzinfo=get_zone(timezone))
    return local.astimezone(dt_timezone.utc)


def day_boundaries(timezone: str, instant: datetime) -> DayBoundaries:
    """
    タイムゾーンを考慮してその日の開始・終了時刻を取得する

    Args:
        timezone: タイムゾーン（IANA形式）
        instant: 基準時刻

    Returns:
        ローカル00:00:00.000と23:59:59.999をUTCに変換した値
    """
    day = local_date(timezone, instant)
    return DayBoundaries(
        start_of_day=local_to_utc(timezone, day, time.min),
        end_of_day=local_to_utc(timezone, day, _END_OF_DAY),
    )
