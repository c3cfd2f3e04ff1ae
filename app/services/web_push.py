"""
Web Push送信（pywebpush）

VAPID鍵で署名し、購読の暗号鍵でペイロードを暗号化して送信します。
pywebpushは同期I/Oのため、ワーカースレッドで実行します。
"""
import asyncio
import logging
from pywebpush import webpush, WebPushException
from app.models.notification import PushSubscription
from app.services.errors import PushDeliveryError

logger = logging.getLogger(__name__)


class WebPushProvider:
    """pywebpushによるPushProvider実装"""

    def __init__(
        self,
        private_key: str,
        subject: str,
        ttl: int = 0,
        timeout: int = 10,
    ):
        self.private_key = private_key
        self.subject = subject
        self.ttl = ttl
        self.timeout = timeout

    async def send(self, subscription: PushSubscription, data: str) -> int:
        return await asyncio.to_thread(self._send_sync, subscription, data)

    def _send_sync(self, subscription: PushSubscription, data: str) -> int:
        subscription_info = {
            "endpoint": subscription.endpoint,
            "keys": {
                "p256dh": subscription.p256dh_key,
                "auth": subscription.auth_key,
            },
        }
        try:
            response = webpush(
                subscription_info=subscription_info,
                data=data,
                vapid_private_key=self.private_key,
                # webpush() が aud / exp を書き込むため毎回新しいdictを渡す
                vapid_claims={"sub": self.subject},
                ttl=self.ttl,
                timeout=self.timeout,
            )
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            body = e.response.text if e.response is not None else None
            logger.debug(f"Push rejected: subscription={subscription.id} status={status_code}")
            raise PushDeliveryError(str(e), status_code=status_code, body=body) from e
        return response.status_code
