from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum
import re


_PRIMARY_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(:[0-5]\d)?$")


class NotificationType(str, Enum):
    """通知種別"""
    MAIN_REMINDER = "main_reminder"
    CHASE_REMINDER = "chase_reminder"


class NotificationResult(str, Enum):
    """通知送信結果"""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class FollowUpSkipReason(str, Enum):
    """追いリマインドを送信しない理由"""
    ALREADY_RECORDED = "already_recorded"
    MAX_COUNT_REACHED = "max_count_reached"
    NOT_TIME_YET = "not_time_yet"
    DISABLED = "disabled"


# --- 通知設定 ---

class NotificationSettings(BaseModel):
    """ユーザーの通知設定（スケジューラからは参照のみ）"""
    user_id: str
    enabled: bool = False
    primary_time: str = "21:00"  # HH:mm
    timezone: str = "Asia/Tokyo"
    follow_up_enabled: bool = True
    follow_up_interval_minutes: int = Field(60, gt=0)
    follow_up_max_count: int = Field(2, ge=0)
    active_days: List[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4, 5, 6])  # 0:日曜〜6:土曜

    class Config:
        from_attributes = True

    @field_validator("primary_time")
    @classmethod
    def _validate_primary_time(cls, value: str) -> str:
        if not _PRIMARY_TIME_PATTERN.match(value):
            raise ValueError(f"primary_time must be HH:mm (24h): {value!r}")
        # DBの "HH:MM:SS" 形式は秒を落として扱う
        return value[:5]

    @field_validator("active_days")
    @classmethod
    def _validate_active_days(cls, value: List[int]) -> List[int]:
        invalid = [day for day in value if day < 0 or day > 6]
        if invalid:
            raise ValueError(f"active_days must be within 0..6: {invalid}")
        return sorted(set(value))


# --- 通知ログ ---

class NotificationLog(BaseModel):
    """通知送信ログ"""
    id: Optional[int] = None
    user_id: str
    type: NotificationType
    sent_at: datetime
    result: NotificationResult
    entry_recorded_at: Optional[datetime] = None
    error_message: Optional[str] = None

    class Config:
        from_attributes = True


# --- 購読情報 ---

class PushSubscriptionKeys(BaseModel):
    """購読の暗号鍵"""
    p256dh: str
    auth: str


class PushSubscriptionInput(BaseModel):
    """ブラウザから送られる購読情報（PushSubscription.toJSON()）"""
    endpoint: str
    keys: PushSubscriptionKeys


class SubscribeRequest(BaseModel):
    """購読登録リクエスト"""
    user_id: str
    subscription: PushSubscriptionInput
    user_agent: Optional[str] = None


class UnsubscribeRequest(BaseModel):
    """購読解除リクエスト"""
    user_id: str
    endpoint: str


class PushSubscription(BaseModel):
    """デバイスごとの購読情報"""
    id: str
    user_id: str
    endpoint: str
    p256dh_key: str
    auth_key: str
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None


# --- 通知ペイロード ---

class NotificationPayloadData(BaseModel):
    """通知クリック時に使う追加データ"""
    url: str
    type: str
    notification_id: str = Field(alias="notificationId")

    class Config:
        populate_by_name = True


class NotificationPayload(BaseModel):
    """プッシュ通知のペイロード（push messageのJSON本文）"""
    title: str
    body: str
    icon: Optional[str] = None
    badge: Optional[str] = None
    data: Optional[NotificationPayloadData] = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class SendResult(BaseModel):
    """デバイス単位の送信結果"""
    subscription_id: str
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    should_remove: bool = False


# --- 追いリマインド ---

class FollowUpTime(BaseModel):
    """追いリマインドの予定時刻"""
    follow_up_number: int
    scheduled_time: datetime
    notification_type: NotificationType = NotificationType.CHASE_REMINDER


class Schedule(BaseModel):
    """追いリマインドスケジュール（永続化しない）"""
    primary_timestamp: datetime
    follow_up_times: List[FollowUpTime] = []


class FollowUpDecision(BaseModel):
    """追いリマインドの送信判定結果"""
    should_send: bool
    follow_up_count: int
    reason: Optional[FollowUpSkipReason] = None


class FollowUpCancelResponse(BaseModel):
    """追いリマインドキャンセル状態"""
    user_id: str
    target_date: str
    cancelled: bool


# --- エントリー連携 ---

class EntryCreatedEvent(BaseModel):
    """エントリー作成イベント"""
    user_id: str
    entry_id: str
    created_at: datetime


class EntryIntegrationResult(BaseModel):
    """エントリー連携処理の結果"""
    log_updated: bool
    follow_ups_cancelled: bool


# --- メイン通知 / リマインダーバッチ ---

class DispatchResponse(BaseModel):
    """メイン通知の送信結果"""
    skipped: bool
    results: List[SendResult] = []


class ReminderBatchResponse(BaseModel):
    """リマインダーバッチレスポンス"""
    processed_count: int
    sent_count: int
    skipped_count: int
    failed_count: int
    errors: List[str]


class DispatchRequest(BaseModel):
    """メイン通知の手動配信リクエスト"""
    timezone: Optional[str] = None  # 省略時はユーザーの通知設定
    body: Optional[str] = None  # 省略時はランダムなメッセージ
    now: Optional[datetime] = None


class NextFollowUpResponse(BaseModel):
    """次の追いリマインド時刻"""
    user_id: str
    next_follow_up_time: Optional[datetime] = None


class UnsubscribeResponse(BaseModel):
    """購読解除レスポンス"""
    removed: bool
