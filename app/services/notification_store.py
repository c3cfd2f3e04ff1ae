"""
通知ストア - SQLAlchemyによるストレージポートの実装

同期セッションの処理は asyncio.to_thread でワーカースレッドに逃がし、
呼び出しごとにセッションを開閉します。
SQLAlchemyの例外はすべて DatabaseError に変換して上位へ渡します。
"""
import asyncio
import logging
import threading
import weakref
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, TypeVar

from sqlalchemy import select, update, delete
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import SessionLocal
from app.models.notification import (
    NotificationLog,
    NotificationResult,
    NotificationSettings,
    NotificationType,
    PushSubscription,
    PushSubscriptionInput,
)
from app.models.notification_db import (
    EntryRecord,
    FollowUpCancellationRecord,
    NotificationLogRecord,
    NotificationSettingsRecord,
    PushSubscriptionRecord,
)
from app.services.errors import DatabaseError
from app.services.timezone_clock import as_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _to_db_time(instant: datetime, dialect_name: str) -> datetime:
    """
    DBに渡す日時に変換する

    SQLiteはtzinfoを保持しないため、UTCのnaive値で統一して比較します。
    それ以外（PostgreSQLなど）はタイムゾーン付きのまま渡します。
    """
    instant = as_utc(instant)
    if dialect_name == "sqlite":
        return instant.replace(tzinfo=None)
    return instant


def _from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return as_utc(value)


# StaticPoolのエンジンごとのロック（全スレッドが1つの接続を共有する）
_shared_connection_locks: "weakref.WeakKeyDictionary[Engine, threading.Lock]" = weakref.WeakKeyDictionary()
_shared_connection_locks_guard = threading.Lock()


def _shared_connection_lock(bind: Optional[Engine]) -> Optional[threading.Lock]:
    if bind is None or not isinstance(getattr(bind, "pool", None), StaticPool):
        return None
    with _shared_connection_locks_guard:
        lock = _shared_connection_locks.get(bind)
        if lock is None:
            lock = threading.Lock()
            _shared_connection_locks[bind] = lock
        return lock


class _SqlStore:
    """セッション管理と例外変換の共通処理"""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory
        bind = session_factory.kw.get("bind")
        self.dialect_name = bind.dialect.name if bind is not None else ""
        self._connection_lock = _shared_connection_lock(bind)

    def _db_time(self, instant: datetime) -> datetime:
        return _to_db_time(instant, self.dialect_name)

    async def _run(self, operation: Callable[[Session], T], conflict_ok: bool = False) -> T:
        return await asyncio.to_thread(self._run_sync, operation, conflict_ok)

    def _run_sync(self, operation: Callable[[Session], T], conflict_ok: bool) -> T:
        if self._connection_lock is None:
            return self._run_in_session(operation, conflict_ok)
        # インメモリSQLiteは接続を共有するため、セッションを1つずつ実行する
        with self._connection_lock:
            return self._run_in_session(operation, conflict_ok)

    def _run_in_session(self, operation: Callable[[Session], T], conflict_ok: bool) -> T:
        with self.session_factory() as db:
            try:
                return operation(db)
            except IntegrityError:
                db.rollback()
                if conflict_ok:
                    raise
                logger.error(f"Integrity error in {type(self).__name__}")
                raise DatabaseError("Integrity constraint violated")
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Database error in {type(self).__name__}: {e}")
                raise DatabaseError(str(e)) from e


class SqlSettingsStore(_SqlStore):
    """通知設定（参照のみ）"""

    async def get_settings(self, user_id: str) -> Optional[NotificationSettings]:
        def operation(db: Session) -> Optional[NotificationSettings]:
            record = db.execute(
                select(NotificationSettingsRecord).where(NotificationSettingsRecord.user_id == user_id)
            ).scalar_one_or_none()
            return NotificationSettings.model_validate(record) if record else None

        return await self._run(operation)

    async def list_enabled(self) -> List[NotificationSettings]:
        def operation(db: Session) -> List[NotificationSettings]:
            records = db.execute(
                select(NotificationSettingsRecord).where(NotificationSettingsRecord.enabled.is_(True))
            ).scalars().all()
            return [NotificationSettings.model_validate(record) for record in records]

        return await self._run(operation)


class SqlLogStore(_SqlStore):
    """通知送信ログ"""

    @staticmethod
    def _to_model(record: NotificationLogRecord) -> NotificationLog:
        return NotificationLog(
            id=record.id,
            user_id=record.user_id,
            type=NotificationType(record.type),
            sent_at=_from_db_time(record.sent_at),
            result=NotificationResult(record.result),
            entry_recorded_at=_from_db_time(record.entry_recorded_at),
            error_message=record.error_message,
        )

    async def get_logs_for_range(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[NotificationLog]:
        def operation(db: Session) -> List[NotificationLog]:
            records = db.execute(
                select(NotificationLogRecord)
                .where(
                    NotificationLogRecord.user_id == user_id,
                    NotificationLogRecord.sent_at >= self._db_time(start),
                    NotificationLogRecord.sent_at < self._db_time(end),
                )
                .order_by(NotificationLogRecord.sent_at.asc())
            ).scalars().all()
            return [self._to_model(record) for record in records]

        return await self._run(operation)

    async def append_log(
        self,
        user_id: str,
        notification_type: NotificationType,
        result: NotificationResult,
        sent_at: datetime,
        error_message: Optional[str] = None,
    ) -> NotificationLog:
        def operation(db: Session) -> NotificationLog:
            record = NotificationLogRecord(
                user_id=user_id,
                type=notification_type.value,
                result=result.value,
                sent_at=self._db_time(sent_at),
                error_message=error_message,
            )
            db.add(record)
            db.commit()
            db.refresh(record)
            return self._to_model(record)

        return await self._run(operation)

    async def update_entry_recorded_at(
        self, user_id: str, recorded_at: datetime, start: datetime, end: datetime
    ) -> int:
        def operation(db: Session) -> int:
            result = db.execute(
                update(NotificationLogRecord)
                .where(
                    NotificationLogRecord.user_id == user_id,
                    NotificationLogRecord.entry_recorded_at.is_(None),
                    NotificationLogRecord.sent_at >= self._db_time(start),
                    NotificationLogRecord.sent_at < self._db_time(end),
                )
                .values(entry_recorded_at=self._db_time(recorded_at))
            )
            db.commit()
            return result.rowcount

        return await self._run(operation)


class SqlEntryStore(_SqlStore):
    """エントリー（存在確認のみ）"""

    async def exists_non_deleted_in_range(
        self, user_id: str, start: datetime, end: datetime
    ) -> bool:
        def operation(db: Session) -> bool:
            entry_id = db.execute(
                select(EntryRecord.id)
                .where(
                    EntryRecord.user_id == user_id,
                    EntryRecord.is_deleted.is_(False),
                    EntryRecord.created_at >= self._db_time(start),
                    EntryRecord.created_at < self._db_time(end),
                )
                .limit(1)
            ).scalar_one_or_none()
            return entry_id is not None

        return await self._run(operation)


class SqlCancellationLedger(_SqlStore):
    """追いリマインドキャンセル台帳"""

    async def insert_if_absent(self, user_id: str, target_date: date) -> bool:
        def operation(db: Session) -> bool:
            db.add(FollowUpCancellationRecord(
                user_id=user_id,
                target_date=target_date,
                cancelled_at=self._db_time(datetime.now(timezone.utc)),
            ))
            db.commit()
            return True

        try:
            return await self._run(operation, conflict_ok=True)
        except IntegrityError:
            # UNIQUE制約違反は「既にキャンセル済み」
            logger.debug(f"Follow-ups already cancelled: user={user_id} date={target_date}")
            return False

    async def exists(self, user_id: str, target_date: date) -> bool:
        def operation(db: Session) -> bool:
            record_id = db.execute(
                select(FollowUpCancellationRecord.id)
                .where(
                    FollowUpCancellationRecord.user_id == user_id,
                    FollowUpCancellationRecord.target_date == target_date,
                )
                .limit(1)
            ).scalar_one_or_none()
            return record_id is not None

        return await self._run(operation)


class SqlSubscriptionStore(_SqlStore):
    """Web Push購読情報"""

    @staticmethod
    def _to_model(record: PushSubscriptionRecord) -> PushSubscription:
        return PushSubscription(
            id=str(record.id),
            user_id=record.user_id,
            endpoint=record.endpoint,
            p256dh_key=record.p256dh,
            auth_key=record.auth,
            user_agent=record.user_agent,
            created_at=_from_db_time(record.created_at),
        )

    async def list_for_user(self, user_id: str) -> List[PushSubscription]:
        def operation(db: Session) -> List[PushSubscription]:
            records = db.execute(
                select(PushSubscriptionRecord)
                .where(PushSubscriptionRecord.user_id == user_id)
                .order_by(PushSubscriptionRecord.id.asc())
            ).scalars().all()
            return [self._to_model(record) for record in records]

        return await self._run(operation)

    async def remove(self, subscription_id: str) -> None:
        def operation(db: Session) -> None:
            db.execute(delete(PushSubscriptionRecord).where(PushSubscriptionRecord.id == int(subscription_id)))
            db.commit()

        await self._run(operation)

    async def add(
        self, user_id: str, subscription: PushSubscriptionInput, user_agent: Optional[str] = None
    ) -> PushSubscription:
        def operation(db: Session) -> PushSubscription:
            record = PushSubscriptionRecord(
                user_id=user_id,
                endpoint=subscription.endpoint,
                p256dh=subscription.keys.p256dh,
                auth=subscription.keys.auth,
                user_agent=user_agent,
                created_at=self._db_time(datetime.now(timezone.utc)),
            )
            db.add(record)
            db.commit()
            db.refresh(record)
            return self._to_model(record)

        def find_existing(db: Session) -> Optional[PushSubscription]:
            record = db.execute(
                select(PushSubscriptionRecord).where(PushSubscriptionRecord.endpoint == subscription.endpoint)
            ).scalar_one_or_none()
            return self._to_model(record) if record else None

        try:
            return await self._run(operation, conflict_ok=True)
        except IntegrityError:
            # 同一エンドポイントの同時登録は既存の購読を返す
            existing = await self._run(find_existing)
            if existing is None:
                raise DatabaseError(f"Failed to register subscription for user: {user_id}")
            return existing

    async def remove_by_endpoint(self, user_id: str, endpoint: str) -> bool:
        def operation(db: Session) -> bool:
            result = db.execute(
                delete(PushSubscriptionRecord).where(
                    PushSubscriptionRecord.user_id == user_id,
                    PushSubscriptionRecord.endpoint == endpoint,
                )
            )
            db.commit()
            return result.rowcount > 0

        return await self._run(operation)
