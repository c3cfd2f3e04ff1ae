from fastapi import APIRouter, HTTPException, Query
from datetime import datetime
from typing import NoReturn, Optional
from app.models.notification import (
    DispatchRequest,
    DispatchResponse,
    EntryCreatedEvent,
    EntryIntegrationResult,
    FollowUpCancelResponse,
    FollowUpDecision,
    NextFollowUpResponse,
    NotificationType,
    PushSubscription,
    ReminderBatchResponse,
    SubscribeRequest,
    UnsubscribeRequest,
    UnsubscribeResponse,
)
from app.services.entry_integration import get_entry_integration_service
from app.services.errors import AllDevicesFailedError, NotificationError, NotificationErrorType
from app.services.followup_service import get_follow_up_scheduler, resolve_user_timezone
from app.services.notification_messages import build_payload
from app.services.notification_service import get_notification_service
from app.services.subscription_service import get_subscription_service
from app.services import timezone_clock
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])

_STATUS_CODES = {
    NotificationErrorType.VALIDATION_ERROR: 400,
    NotificationErrorType.SETTINGS_NOT_FOUND: 404,
    NotificationErrorType.NO_SUBSCRIPTIONS: 404,
    NotificationErrorType.ALL_FAILED: 502,
    NotificationErrorType.VAPID_ERROR: 503,
    NotificationErrorType.CONFIGURATION_ERROR: 503,
    NotificationErrorType.DATABASE_ERROR: 503,
}


def _raise_http_error(e: NotificationError) -> NoReturn:
    status_code = _STATUS_CODES.get(e.error_type, 500)
    if status_code >= 500:
        logger.error(f"Notification error [{e.error_type.value}]: {e.message}")
    # ストレージのエラー内容はクライアントに返さない
    message = "Database error" if e.error_type == NotificationErrorType.DATABASE_ERROR else e.message
    detail = {"error_type": e.error_type.value, "message": message}
    if isinstance(e, AllDevicesFailedError):
        detail["results"] = [result.model_dump() for result in e.results]
    raise HTTPException(status_code=status_code, detail=detail)


# --- 購読 ---


@router.post("/subscribe", response_model=PushSubscription)
async def subscribe(request: SubscribeRequest):
    """
    Web Push購読を登録する

    同じエンドポイントが登録済みの場合は既存の購読を返します。
    """
    service = get_subscription_service()
    try:
        return await service.subscribe(request.user_id, request.subscription, request.user_agent)
    except NotificationError as e:
        _raise_http_error(e)


@router.delete("/subscribe", response_model=UnsubscribeResponse)
async def unsubscribe(request: UnsubscribeRequest):
    """Web Push購読を解除する"""
    service = get_subscription_service()
    try:
        removed = await service.unsubscribe(request.user_id, request.endpoint)
    except NotificationError as e:
        _raise_http_error(e)
    return UnsubscribeResponse(removed=removed)


# --- メイン通知 ---


@router.post("/users/{user_id}/dispatch", response_model=DispatchResponse)
async def dispatch_main_notification(user_id: str, request: DispatchRequest):
    """
    メインリマインドを配信する

    当日すでに記録がある場合は送信せず skipped=True を返します。
    """
    service = get_notification_service()
    try:
        timezone = await resolve_user_timezone(service.settings_store, user_id, request.timezone)
        payload = build_payload(NotificationType.MAIN_REMINDER, body=request.body)
        return await service.dispatch_main_notification(user_id, payload, timezone, request.now)
    except NotificationError as e:
        _raise_http_error(e)


# --- 追いリマインド ---


@router.get("/users/{user_id}/followup/decision", response_model=FollowUpDecision)
async def get_follow_up_decision(
    user_id: str,
    now: Optional[datetime] = Query(None, description="判定時刻（省略時は現在時刻）"),
):
    """追いリマインドを送信すべきか判定する"""
    scheduler = get_follow_up_scheduler()
    try:
        return await scheduler.should_send_follow_up(user_id, now)
    except NotificationError as e:
        _raise_http_error(e)


@router.get("/users/{user_id}/followup/next", response_model=NextFollowUpResponse)
async def get_next_follow_up_time(
    user_id: str,
    now: Optional[datetime] = Query(None, description="基準時刻（省略時は現在時刻）"),
):
    """次の追いリマインド時刻を取得する（予定がない場合はnull）"""
    scheduler = get_follow_up_scheduler()
    try:
        next_time = await scheduler.get_next_follow_up_time(user_id, now)
    except NotificationError as e:
        _raise_http_error(e)
    return NextFollowUpResponse(user_id=user_id, next_follow_up_time=next_time)


@router.post("/users/{user_id}/followup/cancel", response_model=FollowUpCancelResponse)
async def cancel_follow_ups(
    user_id: str,
    target_date: Optional[datetime] = Query(None, description="対象日時（省略時は現在時刻）"),
):
    """指定日の追いリマインドをキャンセルする（キャンセル済みでも成功）"""
    scheduler = get_follow_up_scheduler()
    try:
        day = await scheduler.cancel_follow_ups(user_id, target_date)
    except NotificationError as e:
        _raise_http_error(e)
    return FollowUpCancelResponse(user_id=user_id, target_date=day, cancelled=True)


@router.get("/users/{user_id}/followup/cancelled", response_model=FollowUpCancelResponse)
async def is_follow_up_cancelled(
    user_id: str,
    target_date: Optional[datetime] = Query(None, description="対象日時（省略時は現在時刻）"),
):
    """指定日の追いリマインドがキャンセルされているか確認する"""
    scheduler = get_follow_up_scheduler()
    try:
        timezone = await resolve_user_timezone(scheduler.settings_store, user_id)
        target_date = target_date or timezone_clock.utcnow()
        cancelled = await scheduler.is_follow_up_cancelled(user_id, target_date, timezone)
    except NotificationError as e:
        _raise_http_error(e)
    return FollowUpCancelResponse(
        user_id=user_id,
        target_date=timezone_clock.local_date_string(timezone, target_date),
        cancelled=cancelled,
    )


# --- エントリー連携 ---


@router.post("/entries/created", response_model=EntryIntegrationResult)
async def handle_entry_created(event: EntryCreatedEvent):
    """
    エントリー作成時の通知連携

    当日の通知ログに記録時刻を反映し、当日の追いリマインドをキャンセルします。
    """
    service = get_entry_integration_service()
    try:
        return await service.handle_entry_created(event)
    except NotificationError as e:
        _raise_http_error(e)


# --- リマインダーバッチ ---


@router.get("/batch/reminder", response_model=ReminderBatchResponse)
async def run_reminder_batch(
    now: Optional[datetime] = Query(None, description="実行時刻（省略時は現在時刻）"),
):
    """
    リマインダーバッチを実行する

    外部のスケジューラから1分ごとに呼び出されることを想定しています。
    """
    service = get_notification_service()
    try:
        return await service.run_reminder_batch(now)
    except NotificationError as e:
        _raise_http_error(e)
