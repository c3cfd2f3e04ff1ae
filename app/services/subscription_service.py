"""
購読サービス - Web Push購読情報の登録・解除
"""
from typing import List, Optional
from app.models.notification import PushSubscription, PushSubscriptionInput
from app.services.errors import NotificationValidationError
from app.services.ports import SubscriptionStore
import logging

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Web Push購読情報"""

    def __init__(self, subscription_store: SubscriptionStore):
        self.subscription_store = subscription_store

    async def subscribe(
        self,
        user_id: str,
        subscription: PushSubscriptionInput,
        user_agent: Optional[str] = None,
    ) -> PushSubscription:
        """
        購読を登録する

        同じエンドポイントが既に登録済みの場合は既存の購読を返します。

        Raises:
            NotificationValidationError: user_id・エンドポイント・鍵が空
            DatabaseError: 登録失敗
        """
        if not user_id:
            raise NotificationValidationError("user_id is required")
        if not subscription.endpoint:
            raise NotificationValidationError("endpoint is required")
        if not subscription.keys.p256dh or not subscription.keys.auth:
            raise NotificationValidationError("subscription keys are required")

        registered = await self.subscription_store.add(user_id, subscription, user_agent)
        logger.info(f"Push subscription registered: user={user_id} id={registered.id}")
        return registered

    async def unsubscribe(self, user_id: str, endpoint: str) -> bool:
        """購読を解除する（該当なしの場合はFalse）"""
        if not user_id or not endpoint:
            raise NotificationValidationError("user_id and endpoint are required")
        removed = await self.subscription_store.remove_by_endpoint(user_id, endpoint)
        if removed:
            logger.info(f"Push subscription removed: user={user_id}")
        return removed

    async def get_subscriptions(self, user_id: str) -> List[PushSubscription]:
        return await self.subscription_store.list_for_user(user_id)


_subscription_service: Optional[SubscriptionService] = None


def get_subscription_service() -> SubscriptionService:
    """SubscriptionServiceのシングルトンインスタンスを取得"""
    global _subscription_service
    if _subscription_service is None:
        from app.services.notification_store import SqlSubscriptionStore
        _subscription_service = SubscriptionService(SqlSubscriptionStore())
    return _subscription_service
