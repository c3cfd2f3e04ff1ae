"""
スケジューラ・配信処理が依存するストレージ／プッシュのインターフェース

実装は notification_store.py（SQLAlchemy）と web_push.py（pywebpush）。
テストでは同じシグネチャのインメモリ実装に差し替えます。
"""
from datetime import date, datetime
from typing import List, Optional, Protocol
from app.models.notification import (
    NotificationLog,
    NotificationResult,
    NotificationSettings,
    NotificationType,
    PushSubscription,
    PushSubscriptionInput,
)


class SettingsStore(Protocol):
    async def get_settings(self, user_id: str) -> Optional[NotificationSettings]:
        """存在しない場合はNone"""
        ...

    async def list_enabled(self) -> List[NotificationSettings]:
        ...


class LogStore(Protocol):
    async def get_logs_for_range(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[NotificationLog]:
        """sent_at が [start, end) のログを送信順で返す"""
        ...

    async def append_log(
        self,
        user_id: str,
        notification_type: NotificationType,
        result: NotificationResult,
        sent_at: datetime,
        error_message: Optional[str] = None,
    ) -> NotificationLog:
        ...

    async def update_entry_recorded_at(
        self, user_id: str, recorded_at: datetime, start: datetime, end: datetime
    ) -> int:
        """[start, end) のうち entry_recorded_at 未設定のログを更新し、件数を返す"""
        ...


class EntryStore(Protocol):
    async def exists_non_deleted_in_range(
        self, user_id: str, start: datetime, end: datetime
    ) -> bool:
        ...


class CancellationLedger(Protocol):
    async def insert_if_absent(self, user_id: str, target_date: date) -> bool:
        """挿入した場合True、既に存在した場合False（どちらも成功扱い）"""
        ...

    async def exists(self, user_id: str, target_date: date) -> bool:
        ...


class SubscriptionStore(Protocol):
    async def list_for_user(self, user_id: str) -> List[PushSubscription]:
        ...

    async def remove(self, subscription_id: str) -> None:
        ...

    async def add(
        self, user_id: str, subscription: PushSubscriptionInput, user_agent: Optional[str] = None
    ) -> PushSubscription:
        ...

    async def remove_by_endpoint(self, user_id: str, endpoint: str) -> bool:
        ...


class PushProvider(Protocol):
    async def send(self, subscription: PushSubscription, data: str) -> int:
        """
        成功時はHTTPステータスコードを返す

        Raises:
            PushDeliveryError: プッシュサービスが送信を拒否した場合
        """
        ...
