from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

import models
from utils.dependencies import (admin_required, get_borrowing_service, get_current_user, get_sweeper,
                                is_admin)

router = APIRouter(prefix="/borrow", tags=["Borrow"])

@router.get("/my-borrows", response_model=list[models.BorrowResponse])
async def get_my_borrows(current_user=Depends(get_current_user), borrowing=Depends(get_borrowing_service)):
    return await borrowing.list_borrowings(user_id=current_user["user_id"])

@router.get("/all", response_model=list[models.BorrowResponse])
async def get_all_borrows(admin=Depends(admin_required), borrowing=Depends(get_borrowing_service)):
    return await borrowing.list_borrowings()

@router.get("/active", response_model=list[models.BorrowResponse])
async def get_active_borrows(admin=Depends(admin_required), borrowing=Depends(get_borrowing_service)):
    """Borrowings still holding a copy (Admin only)"""
    return await borrowing.list_active()

@router.get("/overdue", response_model=list[models.BorrowResponse])
async def get_overdue_books(admin=Depends(admin_required), borrowing=Depends(get_borrowing_service)):
    """Open borrowings past their due date (Admin only)"""
    return await borrowing.list_overdue()

@router.post("/sweep", response_model=models.SweepReportResponse)
async def run_overdue_sweep(admin=Depends(admin_required), sweeper=Depends(get_sweeper)):
    """Run the overdue sweep now instead of waiting for the next cycle (Admin only)"""
    report = await sweeper.run_once()
    if report is None:
        raise HTTPException(status_code=409, detail="An overdue sweep is already running")
    return report.as_dict()

@router.post("/{book_id}", response_model=models.BorrowResponse)
async def borrow_book(book_id: int, body: Optional[models.BorrowRequest] = None,
                      current_user=Depends(get_current_user), borrowing=Depends(get_borrowing_service)):
    body = body or models.BorrowRequest()
    user_id = current_user["user_id"]
    if body.user_id and body.user_id != user_id:
        # Admins may check a book out on behalf of a member
        if not is_admin(current_user):
            raise HTTPException(status_code=403, detail="Cannot borrow on behalf of another user")
        user_id = body.user_id
    return await borrowing.borrow(user_id, book_id, body.borrow_date)

@router.get("/{borrow_id}", response_model=models.BorrowResponse)
async def get_borrow(borrow_id: int, current_user=Depends(get_current_user),
                     borrowing=Depends(get_borrowing_service)):
    return await borrowing.get_borrowing(borrow_id, current_user["user_id"], is_admin(current_user))

@router.patch("/{borrow_id}/return", response_model=models.BorrowResponse)
async def return_book(borrow_id: int, current_user=Depends(get_current_user),
                      borrowing=Depends(get_borrowing_service)):
    return await borrowing.return_book(borrow_id, current_user["user_id"], is_admin(current_user))

@router.patch("/{borrow_id}/cancel", response_model=models.BorrowResponse)
async def cancel_borrow(borrow_id: int, current_user=Depends(get_current_user),
                        borrowing=Depends(get_borrowing_service)):
    return await borrowing.cancel_reservation(borrow_id, current_user["user_id"], is_admin(current_user))

@router.patch("/{borrow_id}/overdue", response_model=models.BorrowResponse)
async def mark_overdue(borrow_id: int, admin=Depends(admin_required), borrowing=Depends(get_borrowing_service)):
    return await borrowing.mark_as_overdue(borrow_id, notify=True)

@router.delete("/{borrow_id}")
async def delete_borrow(borrow_id: int, admin=Depends(admin_required), borrowing=Depends(get_borrowing_service)):
    """Remove a borrowing record, restoring its copy if it still holds one (Admin only)"""
    await borrowing.delete_borrowing(borrow_id)
    return {"message": f"Borrowing {borrow_id} deleted", "deleted_borrow_id": borrow_id}
