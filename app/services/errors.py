"""
通知サブシステムのエラー定義

各層の境界で安定したエラー種別（error_type）を付与し、
呼び出し側がメッセージを解析せずに種別で分岐できるようにします。
"""
from enum import Enum
from typing import List, Optional
from app.models.notification import SendResult


class NotificationErrorType(str, Enum):
    """エラー種別"""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SETTINGS_NOT_FOUND = "SETTINGS_NOT_FOUND"
    DATABASE_ERROR = "DATABASE_ERROR"
    VAPID_ERROR = "VAPID_ERROR"
    NO_SUBSCRIPTIONS = "NO_SUBSCRIPTIONS"
    ALL_FAILED = "ALL_FAILED"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


class NotificationError(Exception):
    """通知サブシステムの基底例外"""
    error_type: NotificationErrorType = NotificationErrorType.UNEXPECTED_ERROR

    def __init__(self, message: str = ""):
        super().__init__(message or self.error_type.value)
        self.message = message or self.error_type.value


class NotificationValidationError(NotificationError):
    """呼び出し側の入力不正（リトライ不可）"""
    error_type = NotificationErrorType.VALIDATION_ERROR


class SettingsNotFoundError(NotificationError):
    """通知設定が存在しない（障害ではなく「追いリマインドなし」を意味する）"""
    error_type = NotificationErrorType.SETTINGS_NOT_FOUND

    def __init__(self, user_id: str):
        super().__init__(f"Notification settings not found for user: {user_id}")
        self.user_id = user_id


class DatabaseError(NotificationError):
    """ストレージの読み書き失敗"""
    error_type = NotificationErrorType.DATABASE_ERROR


class ConfigurationError(NotificationError):
    """タイムゾーンや時刻設定などの設定値不正"""
    error_type = NotificationErrorType.CONFIGURATION_ERROR


class UnexpectedNotificationError(NotificationError):
    """予期せぬ例外"""
    error_type = NotificationErrorType.UNEXPECTED_ERROR


class DispatchError(NotificationError):
    """通知配信エラーの基底"""


class VapidError(DispatchError):
    """VAPID鍵が未設定または不正"""
    error_type = NotificationErrorType.VAPID_ERROR


class NoSubscriptionsError(DispatchError):
    """登録デバイスが0件"""
    error_type = NotificationErrorType.NO_SUBSCRIPTIONS

    def __init__(self, user_id: str):
        super().__init__(f"No push subscriptions for user: {user_id}")
        self.user_id = user_id


class AllDevicesFailedError(DispatchError):
    """全デバイスへの送信が失敗（診断用にデバイスごとの結果を保持）"""
    error_type = NotificationErrorType.ALL_FAILED

    def __init__(self, results: List[SendResult], message: Optional[str] = None):
        super().__init__(message or f"All {len(results)} device sends failed")
        self.results = results


class PushDeliveryError(Exception):
    """プッシュサービスが送信を拒否した（PushProviderが送出する）"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
