from typing import Optional

from fastapi import APIRouter, Depends, Query

import models
from utils.dependencies import admin_required, get_borrowing_service, get_catalog_service

router = APIRouter(prefix="/books", tags=["Books"])

@router.post("/", response_model=models.BookResponse)
async def add_book(book: models.BookCreate, admin=Depends(admin_required),
                   catalog=Depends(get_catalog_service)):
    return await catalog.add_book(book.model_dump(exclude={"quantity"}), quantity=book.quantity)

@router.get("/", response_model=models.BookPage)
async def list_books(search: Optional[str] = None,
                     genre: Optional[str] = None,
                     author: Optional[str] = None,
                     publisher: Optional[str] = None,
                     year: Optional[int] = None,
                     min_rating: Optional[float] = Query(None, ge=0, le=5),
                     page: int = Query(1, ge=1),
                     page_size: int = Query(20, ge=1, le=100),
                     catalog=Depends(get_catalog_service)):
    return await catalog.list_books(search=search, genre=genre, author=author, publisher=publisher,
                                    year=year, min_rating=min_rating, page=page, page_size=page_size)

@router.get("/{book_id}", response_model=models.BookResponse)
async def get_book(book_id: int, catalog=Depends(get_catalog_service)):
    return await catalog.get_book(book_id, count_view=True)

@router.put("/{book_id}", response_model=models.BookResponse)
async def update_book(book_id: int, book: models.BookUpdate, admin=Depends(admin_required),
                      catalog=Depends(get_catalog_service)):
    """Update descriptive fields; copy counts have their own endpoints"""
    return await catalog.update_book(book_id, book.model_dump(exclude_unset=True))

@router.patch("/{book_id}/add-copies", response_model=models.BookResponse)
async def add_book_copies(book_id: int, copies: int = Query(..., ge=1), admin=Depends(admin_required),
                          catalog=Depends(get_catalog_service)):
    """Add more copies of an existing book"""
    return await catalog.add_copies(book_id, copies)

@router.patch("/{book_id}/remove-copies", response_model=models.BookResponse)
async def remove_book_copies(book_id: int, copies: int = Query(..., ge=1), admin=Depends(admin_required),
                             catalog=Depends(get_catalog_service)):
    """Remove copies of a book (only if not borrowed)"""
    return await catalog.remove_copies(book_id, copies)

@router.delete("/{book_id}")
async def delete_book(book_id: int, admin=Depends(admin_required), catalog=Depends(get_catalog_service)):
    """Remove a book entirely (only if no copies are currently borrowed)"""
    book = await catalog.get_book(book_id)
    await catalog.delete_book(book_id)
    return {"message": f"Book '{book['title']}' has been removed from the library"}

@router.get("/{book_id}/borrows", response_model=list[models.BorrowResponse])
async def get_book_borrows(book_id: int, admin=Depends(admin_required),
                           catalog=Depends(get_catalog_service),
                           borrowing=Depends(get_borrowing_service)):
    """Borrowing history of one book (Admin only)"""
    await catalog.get_book(book_id)
    return await borrowing.list_borrowings(book_id=book_id)
