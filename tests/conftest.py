"""
テスト共通設定

ストレージ・プッシュ送信のインメモリ実装と、それらを組み立てたサービスのフィクスチャを提供します。
"""
import os

# app.config の読み込み前に設定する
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DEFAULT_TIMEZONE", "UTC")

from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

import pytest

from app.models.notification import (
    NotificationLog,
    NotificationResult,
    NotificationSettings,
    NotificationType,
    PushSubscription,
    PushSubscriptionInput,
)
from app.services.errors import DatabaseError, PushDeliveryError
from app.services.entry_integration import EntryIntegrationService
from app.services.followup_service import FollowUpScheduler
from app.services.notification_log_service import NotificationLogService
from app.services.notification_sender import NotificationDispatcher, VapidConfig
from app.services.notification_service import NotificationService
from app.services.subscription_service import SubscriptionService

VALID_VAPID = VapidConfig(
    public_key="BPublicKeyForTests",
    private_key="PrivateKeyForTests",
    subject="mailto:test@example.com",
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FakeSettingsStore:
    def __init__(self):
        self.settings: Dict[str, NotificationSettings] = {}
        self.fail = False

    def put(self, **kwargs) -> NotificationSettings:
        user_settings = NotificationSettings(**kwargs)
        self.settings[user_settings.user_id] = user_settings
        return user_settings

    async def get_settings(self, user_id: str) -> Optional[NotificationSettings]:
        if self.fail:
            raise DatabaseError("settings read failed")
        return self.settings.get(user_id)

    async def list_enabled(self) -> List[NotificationSettings]:
        if self.fail:
            raise DatabaseError("settings read failed")
        return [s for s in self.settings.values() if s.enabled]


class FakeLogStore:
    def __init__(self):
        self.logs: List[NotificationLog] = []
        self.fail_append = False
        self.fail_update = False

    def add(self, user_id: str, notification_type: NotificationType, sent_at: datetime,
            result: NotificationResult = NotificationResult.SUCCESS) -> None:
        self.logs.append(NotificationLog(
            id=len(self.logs) + 1, user_id=user_id, type=notification_type, sent_at=sent_at, result=result
        ))

    async def get_logs_for_range(self, user_id: str, start: datetime, end: datetime) -> List[NotificationLog]:
        return sorted(
            (log for log in self.logs if log.user_id == user_id and start <= log.sent_at < end),
            key=lambda log: log.sent_at,
        )

    async def append_log(self, user_id, notification_type, result, sent_at, error_message=None) -> NotificationLog:
        if self.fail_append:
            raise DatabaseError("log write failed")
        log = NotificationLog(
            id=len(self.logs) + 1,
            user_id=user_id,
            type=notification_type,
            sent_at=sent_at,
            result=result,
            error_message=error_message,
        )
        self.logs.append(log)
        return log

    async def update_entry_recorded_at(self, user_id, recorded_at, start, end) -> int:
        if self.fail_update:
            raise DatabaseError("log update failed")
        updated = 0
        for log in self.logs:
            if log.user_id == user_id and log.entry_recorded_at is None and start <= log.sent_at < end:
                log.entry_recorded_at = recorded_at
                updated += 1
        return updated


class FakeEntryStore:
    def __init__(self):
        self.entries: List[Tuple[str, datetime, bool]] = []

    def add(self, user_id: str, created_at: datetime, is_deleted: bool = False) -> None:
        self.entries.append((user_id, created_at, is_deleted))

    async def exists_non_deleted_in_range(self, user_id: str, start: datetime, end: datetime) -> bool:
        return any(
            uid == user_id and not deleted and start <= created_at < end
            for uid, created_at, deleted in self.entries
        )


class FakeLedger:
    def __init__(self):
        self.entries: Set[Tuple[str, date]] = set()
        self.insert_calls = 0

    async def insert_if_absent(self, user_id: str, target_date: date) -> bool:
        self.insert_calls += 1
        if (user_id, target_date) in self.entries:
            return False
        self.entries.add((user_id, target_date))
        return True

    async def exists(self, user_id: str, target_date: date) -> bool:
        return (user_id, target_date) in self.entries


class FakeSubscriptionStore:
    def __init__(self):
        self.subscriptions: List[PushSubscription] = []
        self.removed: List[str] = []
        self.fail_remove = False
        self.fail_list = False

    def add_device(self, user_id: str, endpoint: str) -> PushSubscription:
        subscription = PushSubscription(
            id=str(len(self.subscriptions) + 1),
            user_id=user_id,
            endpoint=endpoint,
            p256dh_key="p256dh",
            auth_key="auth",
        )
        self.subscriptions.append(subscription)
        return subscription

    async def list_for_user(self, user_id: str) -> List[PushSubscription]:
        if self.fail_list:
            raise DatabaseError("subscription read failed")
        return [s for s in self.subscriptions if s.user_id == user_id]

    async def remove(self, subscription_id: str) -> None:
        if self.fail_remove:
            raise DatabaseError("subscription delete failed")
        self.removed.append(subscription_id)
        self.subscriptions = [s for s in self.subscriptions if s.id != subscription_id]

    async def add(self, user_id: str, subscription: PushSubscriptionInput, user_agent=None) -> PushSubscription:
        for existing in self.subscriptions:
            if existing.endpoint == subscription.endpoint:
                return existing
        registered = PushSubscription(
            id=str(len(self.subscriptions) + 1),
            user_id=user_id,
            endpoint=subscription.endpoint,
            p256dh_key=subscription.keys.p256dh,
            auth_key=subscription.keys.auth,
            user_agent=user_agent,
        )
        self.subscriptions.append(registered)
        return registered

    async def remove_by_endpoint(self, user_id: str, endpoint: str) -> bool:
        before = len(self.subscriptions)
        self.subscriptions = [
            s for s in self.subscriptions if not (s.user_id == user_id and s.endpoint == endpoint)
        ]
        return len(self.subscriptions) < before


class FakePushProvider:
    """エンドポイントごとに応答（ステータスコードまたは例外）を設定できる"""

    def __init__(self):
        self.responses: Dict[str, object] = {}
        self.sent: List[Tuple[str, str]] = []

    async def send(self, subscription: PushSubscription, data: str) -> int:
        self.sent.append((subscription.endpoint, data))
        response = self.responses.get(subscription.endpoint, 201)
        if isinstance(response, Exception):
            raise response
        return response

    def reject(self, endpoint: str, status_code: int, message: str = "Push rejected") -> None:
        self.responses[endpoint] = PushDeliveryError(message, status_code=status_code, body="")


@pytest.fixture
def settings_store():
    return FakeSettingsStore()


@pytest.fixture
def log_store():
    return FakeLogStore()


@pytest.fixture
def entry_store():
    return FakeEntryStore()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def subscription_store():
    return FakeSubscriptionStore()


@pytest.fixture
def push_provider():
    return FakePushProvider()


@pytest.fixture
def scheduler(settings_store, log_store, entry_store, ledger):
    return FollowUpScheduler(settings_store, log_store, entry_store, ledger)


@pytest.fixture
def dispatcher(subscription_store, push_provider):
    return NotificationDispatcher(subscription_store, push_provider, VALID_VAPID)


@pytest.fixture
def log_service(log_store, settings_store):
    return NotificationLogService(log_store, settings_store)


@pytest.fixture
def notification_service(settings_store, log_store, entry_store, dispatcher, scheduler, log_service):
    return NotificationService(settings_store, log_store, entry_store, dispatcher, scheduler, log_service)


@pytest.fixture
def entry_integration_service(log_service, scheduler):
    return EntryIntegrationService(log_service, scheduler)


@pytest.fixture
def subscription_service(subscription_store):
    return SubscriptionService(subscription_store)
