from enum import Enum
from pydantic import BaseModel, EmailStr, Field, computed_field
from typing import Optional
from datetime import datetime


class Role(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"


class BookStatus(str, Enum):
    AVAILABLE = "available"
    BORROWED = "borrowed"


class BorrowingStatus(str, Enum):
    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"
    CANCELLED = "cancelled"


# Statuses in which a borrowing still holds a copy of the book
OPEN_STATUSES = (BorrowingStatus.ACTIVE.value, BorrowingStatus.OVERDUE.value)


# ---------- Auth ----------
class UserBase(BaseModel):
    name: str
    email: EmailStr

class UserCreate(UserBase):
    user_id: str = Field(min_length=3, max_length=50)
    password: str = Field(min_length=6)

class UserResponse(UserBase):
    user_id: str
    role: Role
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class UserRoleUpdate(BaseModel):
    role: Role  # New role to assign

class ProfileUpdate(BaseModel):
    name: str
    email: EmailStr

class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(min_length=6)

class ForgotPasswordRequest(BaseModel):
    email: EmailStr

class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str = Field(min_length=6)
    confirm_password: str

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"

class UserStats(BaseModel):
    total_users: int
    admin_count: int
    member_count: int
    active_borrowers: int
    inactive_accounts: int

# ---------- Books ----------
class BookBase(BaseModel):
    title: str
    author: str
    code: str
    genre: Optional[str] = None
    publisher: Optional[str] = None
    description: Optional[str] = None
    date_published: Optional[datetime] = None
    is_ebook: bool = False

class BookCreate(BookBase):
    quantity: int = Field(default=1, ge=1)  # Number of copies to add

class BookUpdate(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    code: Optional[str] = None
    genre: Optional[str] = None
    publisher: Optional[str] = None
    description: Optional[str] = None
    date_published: Optional[datetime] = None
    is_ebook: Optional[bool] = None

class BookResponse(BookBase):
    id: int
    status: BookStatus
    quantity: int  # Total number of copies
    available_quantity: int  # Currently available copies
    borrow_count: int = 0
    view_count: int = 0
    average_rating: float = 0.0
    review_count: int = 0

    @computed_field
    @property
    def borrowed_quantity(self) -> int:
        return self.quantity - self.available_quantity

class BookPage(BaseModel):
    items: list[BookResponse]
    total: int
    page: int
    page_size: int
    total_pages: int

# ---------- Borrow ----------
class BorrowRequest(BaseModel):
    user_id: Optional[str] = None  # admins may borrow on behalf of a member
    borrow_date: Optional[datetime] = None

class BorrowResponse(BaseModel):
    id: int
    user_id: str
    book_id: int
    borrow_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    status: BorrowingStatus

class SweepReportResponse(BaseModel):
    checked: int
    marked_overdue: int
    overdue_emails: int
    reminder_emails: int
    failures: int

# ---------- Notifications ----------
class NotificationCreate(BaseModel):
    user_id: str
    message: str = Field(min_length=1)

class NotificationResponse(BaseModel):
    id: int
    user_id: str
    message: str
    timestamp: datetime
    is_read: bool = False

# ---------- Reviews ----------
class ReviewCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = None

class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = None

class ReviewResponse(BaseModel):
    id: int
    book_id: int
    user_id: str
    rating: int
    comment: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

class RatingSummary(BaseModel):
    book_id: int
    average_rating: float
    review_count: int
