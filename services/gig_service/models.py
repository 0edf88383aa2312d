from sqlalchemy import Column, Integer, String, Float, Text, DateTime, ForeignKey, Enum, Boolean, UniqueConstraint, Index
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
import enum

Base = declarative_base()


class GigStatus(str, enum.Enum):
    OPEN = "OPEN"
    ASSIGNED = "ASSIGNED"


class BidStatus(str, enum.Enum):
    PENDING = "PENDING"
    HIRED = "HIRED"
    REJECTED = "REJECTED"


class NotificationType(str, enum.Enum):
    BID_RECEIVED = "BID_RECEIVED"
    BID_HIRED = "BID_HIRED"
    BID_REJECTED = "BID_REJECTED"
    GIG_ASSIGNED = "GIG_ASSIGNED"


class Gig(Base):
    __tablename__ = "gigs"
    __table_args__ = (
        Index("ix_gigs_owner_status", "owner_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=False, index=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    budget = Column(Float, nullable=False)
    status = Column(Enum(GigStatus), nullable=False, default=GigStatus.OPEN, index=True)
    hired_freelancer_id = Column(Integer, nullable=True)  # set once, together with ASSIGNED
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    bids = relationship("Bid", back_populates="gig", cascade="all, delete-orphan")


class Bid(Base):
    __tablename__ = "bids"
    __table_args__ = (
        UniqueConstraint("gig_id", "freelancer_id", name="uq_bids_gig_freelancer"),
        Index("ix_bids_gig_status", "gig_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    gig_id = Column(Integer, ForeignKey("gigs.id"), nullable=False)
    freelancer_id = Column(Integer, nullable=False, index=True)
    message = Column(Text, nullable=False)
    price = Column(Float, nullable=False)
    status = Column(Enum(BidStatus), nullable=False, default=BidStatus.PENDING)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    gig = relationship("Gig", back_populates="bids")


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False)
    type = Column(Enum(NotificationType), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    gig_id = Column(Integer, ForeignKey("gigs.id", ondelete="SET NULL"), nullable=True, index=True)
    bid_id = Column(Integer, ForeignKey("bids.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
