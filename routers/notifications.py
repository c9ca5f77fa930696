from fastapi import APIRouter, Depends, Query

import models
from utils.dependencies import admin_required, get_current_user, get_notification_service, get_user_service, is_admin

router = APIRouter(prefix="/notifications", tags=["Notifications"])

@router.get("/", response_model=list[models.NotificationResponse])
async def my_notifications(unread_only: bool = False, current_user=Depends(get_current_user),
                           notifications=Depends(get_notification_service)):
    return await notifications.list_for_user(current_user["user_id"], unread_only=unread_only)

@router.get("/unread-count")
async def unread_count(current_user=Depends(get_current_user), notifications=Depends(get_notification_service)):
    return {"count": await notifications.unread_count(current_user["user_id"])}

@router.get("/recent", response_model=list[models.NotificationResponse])
async def recent_notifications(limit: int = Query(5, ge=1, le=50), current_user=Depends(get_current_user),
                               notifications=Depends(get_notification_service)):
    return await notifications.recent(current_user["user_id"], limit=limit)

@router.get("/all", response_model=list[models.NotificationResponse])
async def all_notifications(admin=Depends(admin_required), notifications=Depends(get_notification_service)):
    return await notifications.list_all()

@router.post("/", response_model=models.NotificationResponse)
async def create_notification(body: models.NotificationCreate, admin=Depends(admin_required),
                              users=Depends(get_user_service), notifications=Depends(get_notification_service)):
    """Send a message to a member (Admin only)"""
    await users.get_user(body.user_id)
    return await notifications.notify(body.user_id, body.message)

@router.patch("/read-all")
async def mark_all_read(current_user=Depends(get_current_user), notifications=Depends(get_notification_service)):
    updated = await notifications.mark_all_as_read(current_user["user_id"])
    return {"message": f"Marked {updated} notifications as read", "updated": updated}

@router.patch("/{notification_id}/read", response_model=models.NotificationResponse)
async def mark_read(notification_id: int, current_user=Depends(get_current_user),
                    notifications=Depends(get_notification_service)):
    return await notifications.mark_as_read(notification_id, current_user["user_id"], is_admin(current_user))

@router.delete("/{notification_id}")
async def delete_notification(notification_id: int, admin=Depends(admin_required),
                              notifications=Depends(get_notification_service)):
    await notifications.delete(notification_id)
    return {"message": "Notification deleted"}
