"""
通知メッセージ

メインリマインド・追いリマインドの本文候補からランダムに選び、
プッシュ通知のペイロードを組み立てます。
"""
import random
import uuid
from typing import Optional
from app.config import settings
from app.models.notification import NotificationPayload, NotificationPayloadData, NotificationType

MAIN_MESSAGES = [
    "今日はどんな一日だった？",
    "一言だけでも残しておこう",
]

FIRST_FOLLOW_UP_MESSAGES = [
    "まだ間に合うよ",
    "30秒で終わる",
]

LAST_FOLLOW_UP_MESSAGES = [
    "今日の最後のチャンス",
    "ほつれ使う？",
]


def get_message(notification_type: NotificationType, follow_up_count: int = 0) -> str:
    """
    通知種別と追いリマインド回数に応じた本文を取得する

    Args:
        notification_type: 通知種別
        follow_up_count: 何回目の追いリマインドか（1始まり。メインでは無視）

    Returns:
        通知本文
    """
    if notification_type == NotificationType.MAIN_REMINDER:
        return random.choice(MAIN_MESSAGES)
    if follow_up_count <= 1:
        return random.choice(FIRST_FOLLOW_UP_MESSAGES)
    return random.choice(LAST_FOLLOW_UP_MESSAGES)


def build_payload(
    notification_type: NotificationType,
    follow_up_count: int = 0,
    body: Optional[str] = None,
) -> NotificationPayload:
    """プッシュ通知のペイロードを組み立てる（notificationIdは毎回新規発行）"""
    return NotificationPayload(
        title=settings.NOTIFICATION_TITLE,
        body=body or get_message(notification_type, follow_up_count),
        icon=settings.NOTIFICATION_ICON,
        badge=settings.NOTIFICATION_BADGE,
        data=NotificationPayloadData(
            url=settings.NOTIFICATION_URL,
            type=notification_type.value,
            notification_id=str(uuid.uuid4()),
        ),
    )
