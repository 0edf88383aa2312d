import threading

import pytest

import crud
from crud import hire_bid
from database import SessionLocal
from errors import NotFoundError, UnauthorizedError, InvalidStateError, ConflictError, InfrastructureError
from models import Gig, Bid, GigStatus, BidStatus
from sqlalchemy.exc import OperationalError
from sqlalchemy.sql.dml import Update

from conftest import OWNER_ID, OTHER_CLIENT_ID, F1, F2, F3, make_gig, make_bid


def reload(db, model, id):
    db.expire_all()
    return db.get(model, id)


def test_hire_assigns_gig_and_rejects_competing_bids(db, open_gig):
    gig, (b1, b2, b3) = open_gig

    result = hire_bid(db, b2.id, OWNER_ID)

    assert result.bid.id == b2.id
    assert result.bid.status == BidStatus.HIRED
    assert result.gig.status == GigStatus.ASSIGNED
    assert result.gig.hired_freelancer_id == F2
    assert sorted(b.id for b in result.rejected_bids) == sorted([b1.id, b3.id])

    assert reload(db, Bid, b1.id).status == BidStatus.REJECTED
    assert reload(db, Bid, b3.id).status == BidStatus.REJECTED
    assert reload(db, Bid, b2.id).status == BidStatus.HIRED
    stored_gig = reload(db, Gig, gig.id)
    assert stored_gig.status == GigStatus.ASSIGNED
    assert stored_gig.hired_freelancer_id == F2


def test_no_pending_bids_remain_on_assigned_gig(db, open_gig):
    gig, (b1, _, _) = open_gig

    hire_bid(db, b1.id, OWNER_ID)

    db.expire_all()
    pending = db.query(Bid).filter(Bid.gig_id == gig.id, Bid.status == BidStatus.PENDING).count()
    assert pending == 0


def test_hiring_the_same_bid_twice_is_invalid_state(db, open_gig):
    gig, (b1, _, _) = open_gig
    hire_bid(db, b1.id, OWNER_ID)
    db.expire_all()
    before = {b.id: (b.status, b.updated_at) for b in db.query(Bid).all()}

    with pytest.raises(InvalidStateError):
        hire_bid(db, b1.id, OWNER_ID)

    db.expire_all()
    after = {b.id: (b.status, b.updated_at) for b in db.query(Bid).all()}
    assert after == before
    assert reload(db, Gig, gig.id).hired_freelancer_id == F1


def test_hiring_a_rejected_bid_is_invalid_state(db, open_gig):
    _, (b1, b2, _) = open_gig
    hire_bid(db, b2.id, OWNER_ID)

    with pytest.raises(InvalidStateError) as exc_info:
        hire_bid(db, b1.id, OWNER_ID)

    assert "rejected" in exc_info.value.errors[0]


def test_non_owner_cannot_hire(db, open_gig):
    gig, (b1, _, _) = open_gig

    with pytest.raises(UnauthorizedError):
        hire_bid(db, b1.id, OTHER_CLIENT_ID)

    assert reload(db, Gig, gig.id).status == GigStatus.OPEN
    assert all(b.status == BidStatus.PENDING for b in db.query(Bid).all())


def test_freelancer_cannot_hire_own_bid(db, open_gig):
    _, (b1, _, _) = open_gig

    with pytest.raises(UnauthorizedError):
        hire_bid(db, b1.id, F1)


def test_missing_bid_is_not_found(db):
    with pytest.raises(NotFoundError):
        hire_bid(db, 9999, OWNER_ID)


def test_pending_bid_on_assigned_gig_is_conflict(db):
    gig = make_gig(db, status=GigStatus.ASSIGNED)
    bid = make_bid(db, gig, F1)

    with pytest.raises(ConflictError):
        hire_bid(db, bid.id, OWNER_ID)

    assert reload(db, Bid, bid.id).status == BidStatus.PENDING


def test_hire_does_not_touch_other_gigs(db, open_gig):
    _, (b1, _, _) = open_gig
    other_gig = make_gig(db, owner_id=OTHER_CLIENT_ID, title="Logo design")
    other_bids = [make_bid(db, other_gig, freelancer_id) for freelancer_id in (F1, F2)]

    hire_bid(db, b1.id, OWNER_ID)

    stored = reload(db, Gig, other_gig.id)
    assert stored.status == GigStatus.OPEN
    assert stored.hired_freelancer_id is None
    assert all(reload(db, Bid, b.id).status == BidStatus.PENDING for b in other_bids)


def test_race_lost_after_precheck_is_conflict(db, open_gig, monkeypatch):
    gig, (b1, b2, b3) = open_gig
    original_get_bid = crud.get_bid
    raced = []

    def get_bid_then_lose_race(session, bid_id):
        bid = original_get_bid(session, bid_id)
        if not raced:
            raced.append(True)
            competitor = SessionLocal()
            try:
                hire_bid(competitor, b3.id, OWNER_ID)
            finally:
                competitor.close()
        return bid

    monkeypatch.setattr(crud, "get_bid", get_bid_then_lose_race)

    with pytest.raises(ConflictError):
        hire_bid(db, b1.id, OWNER_ID)

    assert reload(db, Bid, b3.id).status == BidStatus.HIRED
    assert reload(db, Bid, b1.id).status == BidStatus.REJECTED
    assert reload(db, Bid, b2.id).status == BidStatus.REJECTED
    assert reload(db, Gig, gig.id).hired_freelancer_id == F3


def test_concurrent_hires_have_exactly_one_winner(db, monkeypatch):
    gig = make_gig(db)
    bids = [make_bid(db, gig, freelancer_id) for freelancer_id in (F1, F2, F3, 14)]
    original_get_bid = crud.get_bid
    barrier = threading.Barrier(len(bids))

    def get_bid_and_wait(session, bid_id):
        bid = original_get_bid(session, bid_id)
        # Everyone passes the pre-check before anyone opens the write transaction
        barrier.wait(timeout=10)
        return bid

    monkeypatch.setattr(crud, "get_bid", get_bid_and_wait)

    outcomes = {}

    def attempt(bid_id):
        session = SessionLocal()
        try:
            hire_bid(session, bid_id, OWNER_ID)
            outcomes[bid_id] = "hired"
        except ConflictError:
            outcomes[bid_id] = "conflict"
        except Exception as exc:
            outcomes[bid_id] = repr(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=attempt, args=(bid.id,)) for bid in bids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert sorted(outcomes.values()) == ["conflict", "conflict", "conflict", "hired"]

    winner_id = next(bid_id for bid_id, outcome in outcomes.items() if outcome == "hired")
    db.expire_all()
    statuses = {b.id: b.status for b in db.query(Bid).filter(Bid.gig_id == gig.id)}
    assert statuses[winner_id] == BidStatus.HIRED
    assert [s for bid_id, s in statuses.items() if bid_id != winner_id] == [BidStatus.REJECTED] * 3
    stored_gig = db.get(Gig, gig.id)
    assert stored_gig.status == GigStatus.ASSIGNED
    assert stored_gig.hired_freelancer_id == next(b.freelancer_id for b in bids if b.id == winner_id)


def test_two_concurrent_hires_leave_third_bid_rejected(db, open_gig, monkeypatch):
    gig, (b1, b2, b3) = open_gig
    original_get_bid = crud.get_bid
    barrier = threading.Barrier(2)

    def get_bid_and_wait(session, bid_id):
        bid = original_get_bid(session, bid_id)
        barrier.wait(timeout=10)
        return bid

    monkeypatch.setattr(crud, "get_bid", get_bid_and_wait)
    outcomes = {}

    def attempt(bid_id):
        session = SessionLocal()
        try:
            hire_bid(session, bid_id, OWNER_ID)
            outcomes[bid_id] = "hired"
        except ConflictError:
            outcomes[bid_id] = "conflict"
        finally:
            session.close()

    threads = [threading.Thread(target=attempt, args=(bid_id,)) for bid_id in (b1.id, b3.id)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert sorted(outcomes.values()) == ["conflict", "hired"]
    assert reload(db, Bid, b2.id).status == BidStatus.REJECTED


def test_database_failure_during_commit_leaves_no_partial_state(db, open_gig, monkeypatch):
    gig, (b1, b2, b3) = open_gig
    original_execute = db.execute
    updates = []

    def failing_execute(statement, *args, **kwargs):
        if isinstance(statement, Update):
            updates.append(statement)
            # Fail on the last write, after the gig and the hired bid were updated
            if len(updates) == 3:
                raise OperationalError("UPDATE bids", {}, Exception("connection lost"))
        return original_execute(statement, *args, **kwargs)

    monkeypatch.setattr(db, "execute", failing_execute)

    with pytest.raises(InfrastructureError):
        hire_bid(db, b2.id, OWNER_ID)

    check = SessionLocal()
    try:
        assert check.get(Gig, gig.id).status == GigStatus.OPEN
        assert check.get(Gig, gig.id).hired_freelancer_id is None
        assert all(b.status == BidStatus.PENDING for b in check.query(Bid).all())
    finally:
        check.close()
