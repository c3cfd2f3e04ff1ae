"""
通知関連のSQLAlchemyモデル

notification_settings: ユーザーごとの通知設定
notification_logs: 通知送信ログ（追記のみ）
follow_up_cancellations: 追いリマインドのキャンセル台帳
push_subscriptions: Web Push購読情報（デバイスごと）
entries: 日記エントリー（記録有無の判定のみに使用）
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Date, Text, JSON, Index, UniqueConstraint
)
from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationSettingsRecord(Base):
    """通知設定テーブル"""
    __tablename__ = "notification_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), unique=True, index=True, nullable=False)
    enabled = Column(Boolean, nullable=False, default=False)
    primary_time = Column(String(8), nullable=False, default="21:00")  # HH:MM
    timezone = Column(String(64), nullable=False, default="Asia/Tokyo")
    follow_up_enabled = Column(Boolean, nullable=False, default=True)
    follow_up_interval_minutes = Column(Integer, nullable=False, default=60)
    follow_up_max_count = Column(Integer, nullable=False, default=2)
    active_days = Column(JSON, nullable=False, default=lambda: [0, 1, 2, 3, 4, 5, 6])
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class NotificationLogRecord(Base):
    """通知送信ログテーブル"""
    __tablename__ = "notification_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=False)
    type = Column(String(20), nullable=False)  # 'main_reminder', 'chase_reminder'
    sent_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    result = Column(String(10), nullable=False)  # 'success', 'failed', 'skipped'
    entry_recorded_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("idx_notification_logs_user_sent_at", "user_id", "sent_at"),
    )


class FollowUpCancellationRecord(Base):
    """追いリマインドキャンセル台帳"""
    __tablename__ = "follow_up_cancellations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=False)
    target_date = Column(Date, nullable=False)
    cancelled_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'target_date', name='uq_follow_up_cancellation_user_date'),
    )


class PushSubscriptionRecord(Base):
    """Web Push購読情報テーブル"""
    __tablename__ = "push_subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), index=True, nullable=False)
    endpoint = Column(String(1024), unique=True, nullable=False)
    p256dh = Column(String(255), nullable=False)
    auth = Column(String(255), nullable=False)
    user_agent = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class EntryRecord(Base):
    """エントリーテーブル（本サービスからは参照のみ）"""
    __tablename__ = "entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=False)
    content = Column(Text, nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_entries_user_created_at", "user_id", "created_at"),
    )

    def __repr__(self):
        return f"<EntryRecord(id={self.id}, user_id={self.user_id})>"
