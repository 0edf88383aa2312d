from dataclasses import dataclass, field
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from models import Gig, Bid, Notification, GigStatus, BidStatus, NotificationType
from errors import (
    MarketplaceError,
    NotFoundError,
    UnauthorizedError,
    BadRequestError,
    InvalidStateError,
    ConflictError,
    InfrastructureError,
)
from typing import List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


# ------- Gigs -------
def create_gig(db: Session, owner_id: int, title: str, description: str, budget: float):
    gig = Gig(owner_id=owner_id, title=title, description=description, budget=budget, status=GigStatus.OPEN)
    db.add(gig)
    db.commit()
    db.refresh(gig)
    return gig


def get_gig(db: Session, gig_id: int):
    return db.query(Gig).filter(Gig.id == gig_id).first()


def list_gigs(
    db: Session,
    status: Optional[GigStatus] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[Gig], int]:
    query = db.query(Gig)
    if status:
        query = query.filter(Gig.status == status)
    if search:
        query = query.filter(Gig.title.ilike(f"%{search}%"))
    total = query.count()
    gigs = (
        query.order_by(Gig.created_at.desc(), Gig.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return gigs, total


def get_gigs_by_owner(db: Session, owner_id: int):
    return db.query(Gig).filter(Gig.owner_id == owner_id).order_by(Gig.created_at.desc(), Gig.id.desc()).all()


def update_gig(db: Session, gig: Gig, **kwargs):
    for key, value in kwargs.items():
        if value is not None:
            setattr(gig, key, value)
    db.commit()
    db.refresh(gig)
    return gig


def delete_gig(db: Session, gig: Gig):
    db.delete(gig)
    db.commit()
    return gig


def count_bids(db: Session, gig_id: int) -> int:
    return db.query(func.count(Bid.id)).filter(Bid.gig_id == gig_id).scalar() or 0


# ------- Bids -------
def get_bid(db: Session, bid_id: int):
    return db.query(Bid).options(joinedload(Bid.gig)).filter(Bid.id == bid_id).first()


def get_bids_by_gig(db: Session, gig_id: int):
    return db.query(Bid).filter(Bid.gig_id == gig_id).order_by(Bid.created_at.desc(), Bid.id.desc()).all()


def get_bids_by_freelancer(db: Session, freelancer_id: int):
    return (
        db.query(Bid)
        .options(joinedload(Bid.gig))
        .filter(Bid.freelancer_id == freelancer_id)
        .order_by(Bid.created_at.desc(), Bid.id.desc())
        .all()
    )


def create_bid(db: Session, gig_id: int, freelancer_id: int, message: str, price: float):
    """Submit a bid on an OPEN gig.

    The gig row is locked for the duration of the insert so a bid cannot be
    added as PENDING while the same gig is being assigned.
    """
    try:
        gig = db.execute(select(Gig).where(Gig.id == gig_id).with_for_update()).scalar_one_or_none()
        if not gig:
            raise NotFoundError("Gig not found")
        if gig.status != GigStatus.OPEN:
            raise BadRequestError("Cannot bid on this gig", ["This gig is no longer accepting bids"])
        if gig.owner_id == freelancer_id:
            raise BadRequestError("Cannot bid on your own gig", ["You cannot submit a bid on a gig you created"])

        existing = db.query(Bid).filter(Bid.gig_id == gig_id, Bid.freelancer_id == freelancer_id).first()
        if existing:
            raise BadRequestError(
                "You have already bid on this gig",
                ["You can only submit one bid per gig", "You may update your existing bid instead"],
            )

        bid = Bid(gig_id=gig_id, freelancer_id=freelancer_id, message=message, price=price, status=BidStatus.PENDING)
        db.add(bid)
        db.commit()
    except MarketplaceError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        raise BadRequestError("You have already bid on this gig", ["You can only submit one bid per gig"]) from exc

    db.refresh(bid)
    logger.info("Bid %s created for gig %s by user %s", bid.id, gig_id, freelancer_id)
    return bid


def update_bid(db: Session, bid_id: int, freelancer_id: int, **kwargs):
    bid = get_bid(db, bid_id)
    if not bid:
        raise NotFoundError("Bid not found")
    if bid.freelancer_id != freelancer_id:
        raise UnauthorizedError("You can only update your own bids")
    if bid.status != BidStatus.PENDING:
        raise BadRequestError("Cannot update this bid", ["You can only update pending bids"])

    for key, value in kwargs.items():
        if value is not None:
            setattr(bid, key, value)
    db.commit()
    db.refresh(bid)
    return bid


# ------- Hiring -------
@dataclass
class HireResult:
    bid: Bid
    gig: Gig
    rejected_bids: List[Bid] = field(default_factory=list)


def hire_bid(db: Session, bid_id: int, user_id: int) -> HireResult:
    """Hire the freelancer behind ``bid_id`` on behalf of the gig owner.

    The preconditions are checked twice: once on a plain read so obvious
    failures return fast, and again inside the write transaction, where the
    gig row is locked and every write is guarded by the status it expects.
    Claiming the gig, hiring the bid and rejecting the other pending bids
    commit together or not at all.

    Raises NotFoundError, UnauthorizedError, InvalidStateError, ConflictError
    or InfrastructureError. Nothing is retried here.
    """
    logger.info("Hiring bid %s requested by user %s", bid_id, user_id)

    try:
        bid = get_bid(db, bid_id)
    except SQLAlchemyError as exc:
        logger.exception("Failed to load bid %s", bid_id)
        raise InfrastructureError("Could not load bid") from exc

    if not bid:
        raise NotFoundError("Bid not found")

    gig = bid.gig
    if gig is None or gig.owner_id != user_id:
        raise UnauthorizedError("Only the gig owner can hire freelancers")

    if bid.status != BidStatus.PENDING:
        raise InvalidStateError(
            "Cannot hire this bid",
            [f"This bid has already been {bid.status.value.lower()}"],
        )

    if gig.status != GigStatus.OPEN:
        raise ConflictError(
            "This gig is no longer accepting bids",
            ["Another freelancer may have already been hired"],
        )

    gig_id = gig.id
    freelancer_id = bid.freelancer_id

    # Close the pre-check read so the hire gets a transaction of its own
    db.rollback()

    try:
        with db.begin():
            current_status = db.execute(
                select(Gig.status).where(Gig.id == gig_id).with_for_update()
            ).scalar_one_or_none()
            if current_status != GigStatus.OPEN:
                raise ConflictError(
                    "This gig is no longer available",
                    ["Another freelancer was hired while processing your request"],
                )

            claimed = db.execute(
                update(Gig)
                .where(Gig.id == gig_id, Gig.status == GigStatus.OPEN)
                .values(status=GigStatus.ASSIGNED, hired_freelancer_id=freelancer_id)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                raise ConflictError(
                    "This gig is no longer available",
                    ["Another freelancer was hired while processing your request"],
                )

            rejected_bids = db.execute(
                select(Bid)
                .where(Bid.gig_id == gig_id, Bid.id != bid_id, Bid.status == BidStatus.PENDING)
                .with_for_update()
            ).scalars().all()

            hired = db.execute(
                update(Bid)
                .where(Bid.id == bid_id, Bid.status == BidStatus.PENDING)
                .values(status=BidStatus.HIRED)
                .execution_options(synchronize_session=False)
            )
            if hired.rowcount != 1:
                raise InvalidStateError("Cannot hire this bid", ["This bid is no longer pending"])

            db.execute(
                update(Bid)
                .where(Bid.gig_id == gig_id, Bid.id != bid_id, Bid.status == BidStatus.PENDING)
                .values(status=BidStatus.REJECTED)
                .execution_options(synchronize_session=False)
            )
    except MarketplaceError as exc:
        logger.warning("Hire of bid %s aborted: %s", bid_id, exc.message)
        raise
    except SQLAlchemyError as exc:
        logger.exception("Transaction failed while hiring bid %s", bid_id)
        raise InfrastructureError("Could not complete the hire", ["No changes were applied"]) from exc

    db.refresh(bid)
    db.refresh(gig)
    for rejected in rejected_bids:
        db.refresh(rejected)

    logger.info(
        "Freelancer %s hired for gig %s, %d competing bids rejected",
        freelancer_id, gig_id, len(rejected_bids),
    )
    return HireResult(bid=bid, gig=gig, rejected_bids=list(rejected_bids))


# ------- Notifications -------
def create_notification(
    db: Session,
    user_id: int,
    type: NotificationType,
    message: str,
    gig_id: Optional[int] = None,
    bid_id: Optional[int] = None,
):
    notification = Notification(
        user_id=user_id,
        type=type,
        message=message,
        gig_id=gig_id,
        bid_id=bid_id,
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def get_notifications(db: Session, user_id: int, limit: int = 50, unread_only: bool = False):
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read == False)
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def count_unread(db: Session, user_id: int) -> int:
    return db.query(func.count(Notification.id)).filter(
        Notification.user_id == user_id,
        Notification.is_read == False
    ).scalar() or 0


def mark_notification_read(db: Session, notification_id: int, user_id: int):
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user_id
    ).first()
    if notification:
        notification.is_read = True
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_read(db: Session, user_id: int):
    db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.is_read == False
    ).update({"is_read": True})
    db.commit()
