"""
通知メッセージのテスト
"""
import json
import pytest
from app.config import settings
from app.models.notification import NotificationType
from app.services.notification_messages import (
    FIRST_FOLLOW_UP_MESSAGES,
    LAST_FOLLOW_UP_MESSAGES,
    MAIN_MESSAGES,
    build_payload,
    get_message,
)


class TestGetMessage:
    """本文の選択"""

    def test_main_message(self):
        assert get_message(NotificationType.MAIN_REMINDER) in MAIN_MESSAGES

    def test_first_follow_up(self):
        assert get_message(NotificationType.CHASE_REMINDER, 1) in FIRST_FOLLOW_UP_MESSAGES

    @pytest.mark.parametrize("count", [2, 3])
    def test_later_follow_ups(self, count):
        assert get_message(NotificationType.CHASE_REMINDER, count) in LAST_FOLLOW_UP_MESSAGES


class TestBuildPayload:
    """ペイロードの組み立て"""

    def test_wire_shape(self):
        payload = json.loads(build_payload(NotificationType.CHASE_REMINDER, 1).to_json())

        assert payload["title"] == settings.NOTIFICATION_TITLE
        assert payload["icon"] == settings.NOTIFICATION_ICON
        assert payload["badge"] == settings.NOTIFICATION_BADGE
        assert payload["data"]["url"] == settings.NOTIFICATION_URL
        assert payload["data"]["type"] == "chase_reminder"
        assert set(payload["data"]) == {"url", "type", "notificationId"}

    def test_notification_id_is_unique(self):
        first = build_payload(NotificationType.MAIN_REMINDER)
        second = build_payload(NotificationType.MAIN_REMINDER)
        assert first.data.notification_id != second.data.notification_id

    def test_custom_body(self):
        assert build_payload(NotificationType.MAIN_REMINDER, body="おつかれさま").body == "おつかれさま"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
