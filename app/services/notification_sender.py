"""
通知送信 - Web Pushによるデバイスへの配信

VAPID設定はディスパッチャ生成時に一度だけ検証し、インスタンスが保持します。
設定が不正な場合、送信はプッシュクライアントに触れずにVapidErrorになります。
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from app.config import settings
from app.models.notification import (
    NotificationPayload,
    NotificationSettings,
    PushSubscription,
    SendResult,
)
from app.services.errors import (
    AllDevicesFailedError,
    NoSubscriptionsError,
    PushDeliveryError,
    VapidError,
)
from app.services.ports import PushProvider, SubscriptionStore
from app.services import timezone_clock
import logging

logger = logging.getLogger(__name__)

# 購読が失効している（再送しない）
GONE_STATUS_CODE = 410


@dataclass(frozen=True)
class VapidConfig:
    """VAPID鍵ペアと連絡先"""
    public_key: str
    private_key: str
    subject: str


def validate_vapid_config(config: Optional[VapidConfig]) -> Optional[str]:
    """
    VAPID設定を検証する

    Returns:
        不正な場合はエラーメッセージ、問題なければNone
    """
    if config is None:
        return "VAPID configuration is missing"
    if not config.public_key or not config.private_key:
        return "VAPID keys are not configured"
    if not config.subject or not config.subject.startswith(("mailto:", "https://")):
        return f"VAPID subject must be a mailto: or https: URL: {config.subject!r}"
    return None


def is_time_to_send_notification(user_settings: NotificationSettings, now: datetime) -> bool:
    """
    メインリマインドの送信時刻かどうか

    ローカル時刻のHH:mmがprimary_timeと完全一致し、かつ曜日がactive_daysに
    含まれる場合のみTrue。1分ごとの呼び出しを前提とし、取りこぼした分は送信しません。
    """
    current_time = timezone_clock.local_time_string(user_settings.timezone, now)
    if current_time != user_settings.primary_time:
        return False
    return timezone_clock.day_of_week(user_settings.timezone, now) in user_settings.active_days


class NotificationDispatcher:
    """購読デバイスへのプッシュ通知配信"""

    def __init__(
        self,
        subscription_store: SubscriptionStore,
        push_provider: PushProvider,
        vapid_config: Optional[VapidConfig],
    ):
        self.subscription_store = subscription_store
        self.push_provider = push_provider
        self.vapid_config = vapid_config
        self.vapid_error = validate_vapid_config(vapid_config)
        if self.vapid_error:
            logger.warning(f"Web Push disabled: {self.vapid_error}")

    @property
    def configured(self) -> bool:
        return self.vapid_error is None

    def _ensure_configured(self) -> None:
        if self.vapid_error:
            raise VapidError(self.vapid_error)

    async def send_notification(
        self, subscription: PushSubscription, payload: NotificationPayload
    ) -> SendResult:
        """
        1デバイスにプッシュ通知を送信する

        プッシュサービスの拒否は例外ではなくSendResultで返します。
        410 Goneは購読失効として should_remove=True になります。

        Args:
            subscription: 送信先の購読情報
            payload: 通知ペイロード

        Returns:
            送信結果

        Raises:
            VapidError: VAPID設定が不正
        """
        self._ensure_configured()
        try:
            status_code = await self.push_provider.send(subscription, payload.to_json())
        except PushDeliveryError as e:
            if e.status_code == GONE_STATUS_CODE:
                logger.info(f"Subscription expired: {subscription.id}")
                return SendResult(
                    subscription_id=subscription.id,
                    success=False,
                    status_code=GONE_STATUS_CODE,
                    error="Subscription has expired",
                    should_remove=True,
                )
            logger.warning(f"Push send failed: subscription={subscription.id} status={e.status_code} error={e}")
            return SendResult(
                subscription_id=subscription.id,
                success=False,
                status_code=e.status_code,
                error=str(e),
            )
        except Exception as e:
            logger.error(f"Push send error: subscription={subscription.id} error={e}")
            return SendResult(subscription_id=subscription.id, success=False, error=str(e))

        return SendResult(subscription_id=subscription.id, success=True, status_code=status_code)

    async def send_to_all_devices(
        self, user_id: str, payload: NotificationPayload
    ) -> List[SendResult]:
        """
        ユーザーの全デバイスにプッシュ通知を送信する

        デバイスごとの送信は並行に実行し、結果は購読の並び順で返します。
        失効した購読は全送信の完了後にまとめて削除します（削除失敗はログのみ）。

        Args:
            user_id: ユーザーID
            payload: 通知ペイロード

        Returns:
            デバイスごとの送信結果（一部失敗を含む場合あり）

        Raises:
            DatabaseError: 購読情報の読み込み失敗
            NoSubscriptionsError: 登録デバイスが0件
            VapidError: VAPID設定が不正
            AllDevicesFailedError: 全デバイスへの送信が失敗
        """
        subscriptions = await self.subscription_store.list_for_user(user_id)
        if not subscriptions:
            raise NoSubscriptionsError(user_id)

        self._ensure_configured()

        results = list(await asyncio.gather(
            *(self.send_notification(subscription, payload) for subscription in subscriptions)
        ))

        expired_ids = [result.subscription_id for result in results if result.should_remove]
        if expired_ids:
            await self._remove_expired(expired_ids)

        success_count = sum(1 for result in results if result.success)
        if success_count == 0:
            raise AllDevicesFailedError(results)

        logger.info(f"Notification sent: user={user_id} success={success_count}/{len(results)}")
        return results

    async def _remove_expired(self, subscription_ids: List[str]) -> None:
        outcomes = await asyncio.gather(
            *(self.subscription_store.remove(subscription_id) for subscription_id in subscription_ids),
            return_exceptions=True,
        )
        for subscription_id, outcome in zip(subscription_ids, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Failed to remove expired subscription {subscription_id}: {outcome}")
            else:
                logger.info(f"Removed expired subscription: {subscription_id}")


_notification_dispatcher: Optional[NotificationDispatcher] = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """NotificationDispatcherのシングルトンインスタンスを取得"""
    global _notification_dispatcher
    if _notification_dispatcher is None:
        from app.services.notification_store import SqlSubscriptionStore
        from app.services.web_push import WebPushProvider
        _notification_dispatcher = NotificationDispatcher(
            subscription_store=SqlSubscriptionStore(),
            push_provider=WebPushProvider(
                private_key=settings.VAPID_PRIVATE_KEY,
                subject=settings.VAPID_SUBJECT,
                ttl=settings.PUSH_TTL_SECONDS,
                timeout=settings.PUSH_TIMEOUT_SECONDS,
            ),
            vapid_config=VapidConfig(
                public_key=settings.VAPID_PUBLIC_KEY,
                private_key=settings.VAPID_PRIVATE_KEY,
                subject=settings.VAPID_SUBJECT,
            ),
        )
    return _notification_dispatcher
