from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from database import get_db
from auth import resolve_account
from schemas import (
    GigCreate, GigUpdate, GigResponse, PaginatedGigs,
    BidCreate, BidUpdate, BidResponse,
)
from crud import (
    create_gig, get_gig, list_gigs, get_gigs_by_owner, update_gig, delete_gig, count_bids,
    create_bid, get_bid, get_bids_by_gig, get_bids_by_freelancer, update_bid, hire_bid,
)
from models import GigStatus
from events import publish_event
from fanout import HireAnnouncement, announce_hire, announce_new_bid, announce_gig
from realtime import RealtimeGateway, SocketEvents, get_realtime
from typing import Optional
import math

router = APIRouter(prefix="/api/v1", tags=["gigs"])


def _gig_payload(gig) -> dict:
    return GigResponse.model_validate(gig).model_dump(mode="json")


# ------- Gigs -------
@router.post("/gigs", response_model=GigResponse, status_code=status.HTTP_201_CREATED)
def create_gig_endpoint(
    gig: GigCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    account=Depends(resolve_account),
    realtime: RealtimeGateway = Depends(get_realtime)
):
    owner_id = account.get("id")
    gig_obj = create_gig(db, owner_id, **gig.model_dump())

    background_tasks.add_task(announce_gig, realtime, SocketEvents.GIG_CREATED, gig_obj.id, _gig_payload(gig_obj))
    background_tasks.add_task(publish_event, "gig.created", {"gig_id": gig_obj.id, "client_id": owner_id})
    return gig_obj


@router.get("/gigs", response_model=PaginatedGigs)
def list_gigs_endpoint(
    status_filter: Optional[GigStatus] = Query(None, alias="status"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db)
):
    # The public feed only shows gigs that still accept bids
    if status_filter is None:
        status_filter = GigStatus.OPEN
    gigs, total = list_gigs(db, status=status_filter, search=search, page=page, limit=limit)
    return {
        "gigs": gigs,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if total else 0,
    }


@router.get("/gigs/my", response_model=list[GigResponse])
def get_my_gigs(db: Session = Depends(get_db), account=Depends(resolve_account)):
    return get_gigs_by_owner(db, account.get("id"))


@router.get("/gigs/{gig_id}", response_model=GigResponse)
def get_gig_endpoint(gig_id: int, db: Session = Depends(get_db)):
    gig = get_gig(db, gig_id)
    if not gig:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Gig not found")
    return gig


@router.put("/gigs/{gig_id}", response_model=GigResponse)
def update_gig_endpoint(
    gig_id: int,
    gig_update: GigUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    account=Depends(resolve_account),
    realtime: RealtimeGateway = Depends(get_realtime)
):
    gig = get_gig(db, gig_id)
    if not gig:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Gig not found")
    if account.get("id") != gig.owner_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="You are not authorized to update this gig")
    if gig.status != GigStatus.OPEN:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot update an assigned gig")

    updated = update_gig(db, gig, **gig_update.model_dump(exclude_unset=True))
    background_tasks.add_task(announce_gig, realtime, SocketEvents.GIG_UPDATED, updated.id, _gig_payload(updated))
    return updated


@router.delete("/gigs/{gig_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_gig_endpoint(
    gig_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    account=Depends(resolve_account),
    realtime: RealtimeGateway = Depends(get_realtime)
):
    gig = get_gig(db, gig_id)
    if not gig:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Gig not found")
    if account.get("id") != gig.owner_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="You are not authorized to delete this gig")
    if count_bids(db, gig_id) > 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete a gig with bids")

    delete_gig(db, gig)
    background_tasks.add_task(announce_gig, realtime, SocketEvents.GIG_DELETED, gig_id)
    return None


# ------- Bids -------
@router.post("/bids", response_model=BidResponse, status_code=status.HTTP_201_CREATED, tags=["bids"])
def create_bid_endpoint(
    bid: BidCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    account=Depends(resolve_account),
    realtime: RealtimeGateway = Depends(get_realtime)
):
    freelancer_id = account.get("id")
    bid_obj = create_bid(db, bid.gig_id, freelancer_id, bid.message, bid.price)
    gig = bid_obj.gig

    freelancer_name = account.get("name") or f"User #{freelancer_id}"
    bid_payload = BidResponse.model_validate(bid_obj).model_dump(mode="json")
    background_tasks.add_task(announce_new_bid, bid_payload, gig.title, gig.owner_id, freelancer_name, realtime)
    background_tasks.add_task(publish_event, "bid.created", {
        "bid_id": bid_obj.id,
        "gig_id": gig.id,
        "freelancer_id": freelancer_id,
        "client_id": gig.owner_id,
    })
    return bid_obj


@router.get("/bids/my", response_model=list[BidResponse], tags=["bids"])
def get_my_bids(db: Session = Depends(get_db), account=Depends(resolve_account)):
    return get_bids_by_freelancer(db, account.get("id"))


@router.get("/bids/gig/{gig_id}", response_model=list[BidResponse], tags=["bids"])
def get_gig_bids(gig_id: int, db: Session = Depends(get_db), account=Depends(resolve_account)):
    gig = get_gig(db, gig_id)
    if not gig:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Gig not found")
    if account.get("id") != gig.owner_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Only the gig owner can view all bids")
    return get_bids_by_gig(db, gig_id)


@router.get("/bids/{bid_id}", response_model=BidResponse, tags=["bids"])
def get_bid_endpoint(bid_id: int, db: Session = Depends(get_db), account=Depends(resolve_account)):
    bid = get_bid(db, bid_id)
    if not bid:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bid not found")
    return bid


@router.put("/bids/{bid_id}", response_model=BidResponse, tags=["bids"])
def update_bid_endpoint(
    bid_id: int,
    bid_update: BidUpdate,
    db: Session = Depends(get_db),
    account=Depends(resolve_account)
):
    return update_bid(db, bid_id, account.get("id"), **bid_update.model_dump(exclude_unset=True))


@router.patch("/bids/{bid_id}/hire", response_model=BidResponse, tags=["hiring"])
def hire_bid_endpoint(
    bid_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    account=Depends(resolve_account),
    realtime: RealtimeGateway = Depends(get_realtime)
):
    """
    Hire the freelancer behind a bid. Only the gig owner may do this.
    The gig becomes ASSIGNED, the bid HIRED and every other pending bid
    REJECTED in one transaction; notifications go out after the response.
    """
    result = hire_bid(db, bid_id, account.get("id"))
    background_tasks.add_task(announce_hire, HireAnnouncement.from_result(result), realtime)
    return result.bid
