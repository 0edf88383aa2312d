from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from models import GigStatus, BidStatus, NotificationType


# ------- Gigs -------
class GigCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10, max_length=5000)
    budget: float = Field(..., ge=1)


class GigUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, min_length=10, max_length=5000)
    budget: Optional[float] = Field(None, ge=1)


class GigResponse(BaseModel):
    id: int
    owner_id: int
    title: str
    description: str
    budget: float
    status: GigStatus
    hired_freelancer_id: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaginatedGigs(BaseModel):
    gigs: List[GigResponse]
    total: int
    page: int
    limit: int
    total_pages: int


# ------- Bids -------
class BidCreate(BaseModel):
    gig_id: int
    message: str = Field(..., min_length=10, max_length=1000)
    price: float = Field(..., ge=1)


class BidUpdate(BaseModel):
    message: Optional[str] = Field(None, min_length=10, max_length=1000)
    price: Optional[float] = Field(None, ge=1)


class BidResponse(BaseModel):
    id: int
    gig_id: int
    freelancer_id: int
    message: str
    price: float
    status: BidStatus
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ------- Notifications -------
class NotificationResponse(BaseModel):
    id: int
    user_id: int
    type: NotificationType
    message: str
    is_read: bool
    gig_id: Optional[int] = None
    bid_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class UnreadCount(BaseModel):
    count: int
