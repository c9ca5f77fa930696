from fastapi import APIRouter, Depends

import models
from utils.dependencies import get_current_user, get_review_service, is_admin

router = APIRouter(prefix="/reviews", tags=["Reviews"])

@router.post("/book/{book_id}", response_model=models.ReviewResponse)
async def add_review(book_id: int, review: models.ReviewCreate, current_user=Depends(get_current_user),
                     reviews=Depends(get_review_service)):
    return await reviews.add_review(book_id, current_user["user_id"], review.rating, review.comment)

@router.get("/book/{book_id}", response_model=list[models.ReviewResponse])
async def book_reviews(book_id: int, reviews=Depends(get_review_service)):
    return await reviews.list_for_book(book_id)

@router.get("/book/{book_id}/rating", response_model=models.RatingSummary)
async def book_rating(book_id: int, reviews=Depends(get_review_service)):
    return await reviews.average_rating(book_id)

@router.get("/mine", response_model=list[models.ReviewResponse])
async def my_reviews(current_user=Depends(get_current_user), reviews=Depends(get_review_service)):
    return await reviews.list_for_user(current_user["user_id"])

@router.put("/{review_id}", response_model=models.ReviewResponse)
async def update_review(review_id: int, review: models.ReviewUpdate, current_user=Depends(get_current_user),
                        reviews=Depends(get_review_service)):
    return await reviews.update_review(review_id, current_user["user_id"], is_admin(current_user),
                                       rating=review.rating, comment=review.comment)

@router.delete("/{review_id}")
async def delete_review(review_id: int, current_user=Depends(get_current_user),
                        reviews=Depends(get_review_service)):
    await reviews.delete_review(review_id, current_user["user_id"], is_admin(current_user))
    return {"message": "Review deleted"}
