from app.models.notification import (
    NotificationType,
    NotificationResult,
    FollowUpSkipReason,
    NotificationSettings,
    NotificationLog,
    PushSubscription,
    PushSubscriptionInput,
    NotificationPayload,
    NotificationPayloadData,
    SendResult,
    FollowUpTime,
    Schedule,
    FollowUpDecision,
    EntryCreatedEvent,
    EntryIntegrationResult,
    DispatchRequest,
    DispatchResponse,
    NextFollowUpResponse,
    ReminderBatchResponse,
)

__all__ = [
    "NotificationType",
    "NotificationResult",
    "FollowUpSkipReason",
    "NotificationSettings",
    "NotificationLog",
    "PushSubscription",
    "PushSubscriptionInput",
    "NotificationPayload",
    "NotificationPayloadData",
    "SendResult",
    "FollowUpTime",
    "Schedule",
    "FollowUpDecision",
    "EntryCreatedEvent",
    "EntryIntegrationResult",
    "DispatchRequest",
    "DispatchResponse",
    "NextFollowUpResponse",
    "ReminderBatchResponse",
]
