from fastapi import APIRouter, Depends

import models
from utils.dependencies import admin_required, get_borrowing_service, get_user_service

router = APIRouter(prefix="/users", tags=["Users"])

@router.get("/", response_model=list[models.UserResponse])
async def list_users(admin=Depends(admin_required), users=Depends(get_user_service)):
    """Get all users (Admin only)"""
    return await users.list_users()

@router.get("/stats/summary", response_model=models.UserStats)
async def get_user_stats(admin=Depends(admin_required), users=Depends(get_user_service)):
    """Get user statistics summary (Admin only)"""
    return await users.stats()

@router.get("/{user_id}", response_model=models.UserResponse)
async def get_user(user_id: str, admin=Depends(admin_required), users=Depends(get_user_service)):
    """Get a specific user by ID (Admin only)"""
    return await users.get_user(user_id)

@router.delete("/{user_id}")
async def delete_user(user_id: str, current_admin=Depends(admin_required), users=Depends(get_user_service)):
    """Delete a user (Admin only)"""
    user_to_delete = await users.get_user(user_id)
    await users.delete_user(user_id, actor_id=current_admin["user_id"])
    return {
        "message": f"User '{user_to_delete['name']}' ({user_to_delete['email']}) has been deleted successfully",
        "deleted_user_id": user_id
    }

@router.patch("/{user_id}/role")
async def change_user_role(user_id: str, body: models.UserRoleUpdate,
                           current_admin=Depends(admin_required), users=Depends(get_user_service)):
    """Change a user's role (Admin only)"""
    old_role = (await users.get_user(user_id)).get("role")
    user = await users.change_role(user_id, body.role, actor_id=current_admin["user_id"])
    return {
        "message": f"User '{user['name']}' role changed from '{old_role}' to '{user['role']}'",
        "user_id": user_id,
        "old_role": old_role,
        "new_role": user["role"]
    }

@router.patch("/{user_id}/grant-admin", response_model=models.UserResponse)
async def grant_admin(user_id: str, current_admin=Depends(admin_required), users=Depends(get_user_service)):
    return await users.grant_admin(user_id, actor_id=current_admin["user_id"])

@router.patch("/{user_id}/revoke-admin", response_model=models.UserResponse)
async def revoke_admin(user_id: str, current_admin=Depends(admin_required), users=Depends(get_user_service)):
    return await users.revoke_admin(user_id, actor_id=current_admin["user_id"])

@router.patch("/{user_id}/activate", response_model=models.UserResponse)
async def activate_user(user_id: str, admin=Depends(admin_required), users=Depends(get_user_service)):
    return await users.activate(user_id)

@router.patch("/{user_id}/deactivate", response_model=models.UserResponse)
async def deactivate_user(user_id: str, admin=Depends(admin_required), users=Depends(get_user_service)):
    return await users.deactivate(user_id)

@router.patch("/{user_id}/toggle-active", response_model=models.UserResponse)
async def toggle_user_active(user_id: str, admin=Depends(admin_required), users=Depends(get_user_service)):
    return await users.toggle_activation(user_id)

@router.get("/{user_id}/borrows", response_model=list[models.BorrowResponse])
async def get_user_borrows(user_id: str, admin=Depends(admin_required),
                           users=Depends(get_user_service), borrowing=Depends(get_borrowing_service)):
    """Get all borrow records for a specific user (Admin only)"""
    await users.get_user(user_id)
    return await borrowing.list_borrowings(user_id=user_id)

@router.get("/{user_id}/active-borrows", response_model=list[models.BorrowResponse])
async def get_user_active_borrows(user_id: str, admin=Depends(admin_required),
                                  users=Depends(get_user_service), borrowing=Depends(get_borrowing_service)):
    """Get only open (active or overdue) borrow records for a specific user (Admin only)"""
    await users.get_user(user_id)
    return await borrowing.list_active(user_id=user_id)
