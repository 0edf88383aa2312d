"""Post-commit fan-out of bid and gig events.

Runs after the response has been sent, as a FastAPI background task. Every
recipient is handled in its own task and its own database session: the
notification row is written first, then the live push goes out, so a client
that missed the push still finds the notification on its next fetch. Any
failure is logged and stops only that recipient's delivery.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
from database import SessionLocal
from crud import HireResult, create_notification
from events import publish_event
from models import NotificationType
from realtime import RealtimeGateway, SocketEvents, GIGS_ROOM, gig_room
from schemas import BidResponse, GigResponse, NotificationResponse
import asyncio
import logging

logger = logging.getLogger(__name__)


@dataclass
class HireAnnouncement:
    """Plain snapshot of a committed hire, safe to use once the request session is gone."""
    gig_id: int
    gig_title: str
    owner_id: int
    bid_id: int
    freelancer_id: int
    bid: Dict[str, Any]
    gig: Dict[str, Any]
    rejected: List[Tuple[int, int]] = field(default_factory=list)

    @classmethod
    def from_result(cls, result: HireResult) -> "HireAnnouncement":
        return cls(
            gig_id=result.gig.id,
            gig_title=result.gig.title,
            owner_id=result.gig.owner_id,
            bid_id=result.bid.id,
            freelancer_id=result.bid.freelancer_id,
            bid=BidResponse.model_validate(result.bid).model_dump(mode="json"),
            gig=GigResponse.model_validate(result.gig).model_dump(mode="json"),
            rejected=[(rejected.id, rejected.freelancer_id) for rejected in result.rejected_bids],
        )


def _persist_notification(session_factory, user_id, type, message, gig_id, bid_id) -> Dict[str, Any]:
    db = session_factory()
    try:
        notification = create_notification(db, user_id, type, message, gig_id=gig_id, bid_id=bid_id)
        return NotificationResponse.model_validate(notification).model_dump(mode="json")
    finally:
        db.close()


async def _push(realtime: RealtimeGateway, user_id: int, event: str, payload: Dict[str, Any]):
    try:
        await realtime.push_to_user(user_id, event, payload)
    except Exception:
        logger.exception("Failed to push %s to user %s", event, user_id)


async def _broadcast(realtime: RealtimeGateway, room: str, event: str, payload: Dict[str, Any]):
    try:
        await realtime.broadcast(room, event, payload)
    except Exception:
        logger.exception("Failed to broadcast %s to room %s", event, room)


async def notify_user(
    realtime: RealtimeGateway,
    user_id: int,
    type: NotificationType,
    message: str,
    gig_id: Optional[int] = None,
    bid_id: Optional[int] = None,
    event: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
    session_factory: Callable = SessionLocal,
) -> bool:
    """Persist one notification, then push it. Returns False if nothing was delivered."""
    try:
        notification = await asyncio.to_thread(
            _persist_notification, session_factory, user_id, type, message, gig_id, bid_id
        )
    except Exception:
        logger.exception("Failed to persist %s notification for user %s", type.value, user_id)
        return False

    await _push(realtime, user_id, SocketEvents.NOTIFICATION, notification)
    if event:
        await _push(realtime, user_id, event, payload or {})
    logger.info("Notification %s sent to user %s", type.value, user_id)
    return True


async def announce_hire(
    announcement: HireAnnouncement,
    realtime: RealtimeGateway,
    session_factory: Callable = SessionLocal,
    publish: Callable = publish_event,
) -> None:
    a = announcement
    deliveries = [
        notify_user(
            realtime,
            a.freelancer_id,
            NotificationType.BID_HIRED,
            f'Congratulations! You have been hired for: "{a.gig_title}"',
            gig_id=a.gig_id,
            bid_id=a.bid_id,
            event=SocketEvents.BID_HIRED,
            payload={"bid_id": a.bid_id, "gig_id": a.gig_id, "bid": a.bid, "freelancer_id": a.freelancer_id},
            session_factory=session_factory,
        ),
        notify_user(
            realtime,
            a.owner_id,
            NotificationType.GIG_ASSIGNED,
            f'Your gig "{a.gig_title}" has been assigned',
            gig_id=a.gig_id,
            bid_id=a.bid_id,
            session_factory=session_factory,
        ),
    ]
    for rejected_bid_id, rejected_freelancer_id in a.rejected:
        deliveries.append(
            notify_user(
                realtime,
                rejected_freelancer_id,
                NotificationType.BID_REJECTED,
                f'Your bid for "{a.gig_title}" was not selected.',
                gig_id=a.gig_id,
                bid_id=rejected_bid_id,
                event=SocketEvents.BID_REJECTED,
                payload={"bid_id": rejected_bid_id, "gig_id": a.gig_id, "freelancer_id": rejected_freelancer_id},
                session_factory=session_factory,
            )
        )

    results = await asyncio.gather(*deliveries, return_exceptions=True)
    failed = sum(1 for r in results if r is not True)
    if failed:
        logger.warning("Hire of bid %s: %d of %d notifications not delivered", a.bid_id, failed, len(results))

    gig_payload = {"gig_id": a.gig_id, "gig": a.gig, "owner_id": a.owner_id}
    await _broadcast(realtime, gig_room(a.gig_id), SocketEvents.GIG_UPDATED, gig_payload)
    await _broadcast(realtime, GIGS_ROOM, SocketEvents.GIG_UPDATED, gig_payload)

    try:
        await asyncio.to_thread(publish, "bid.hired", {
            "bid_id": a.bid_id,
            "gig_id": a.gig_id,
            "client_id": a.owner_id,
            "freelancer_id": a.freelancer_id,
            "rejected_bid_ids": [bid_id for bid_id, _ in a.rejected],
        })
    except Exception:
        logger.exception("Failed to publish bid.hired for bid %s", a.bid_id)


async def announce_new_bid(
    bid: Dict[str, Any],
    gig_title: str,
    owner_id: int,
    freelancer_name: str,
    realtime: RealtimeGateway,
    session_factory: Callable = SessionLocal,
) -> None:
    await notify_user(
        realtime,
        owner_id,
        NotificationType.BID_RECEIVED,
        f'{freelancer_name} has submitted a bid on your gig: "{gig_title}"',
        gig_id=bid["gig_id"],
        bid_id=bid["id"],
        event=SocketEvents.BID_RECEIVED,
        payload={"bid_id": bid["id"], "gig_id": bid["gig_id"], "bid": bid, "freelancer_id": bid["freelancer_id"]},
        session_factory=session_factory,
    )


async def announce_gig(realtime: RealtimeGateway, event: str, gig_id: int, gig: Optional[Dict[str, Any]] = None):
    payload = {"gig_id": gig_id}
    if gig is not None:
        payload["gig"] = gig
        payload["owner_id"] = gig.get("owner_id")
    await _broadcast(realtime, GIGS_ROOM, event, payload)
    await _broadcast(realtime, gig_room(gig_id), event, payload)
