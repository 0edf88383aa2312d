import os
import tempfile

_db_dir = tempfile.mkdtemp(prefix="gig-service-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ["REALTIME_BACKEND"] = "memory"

import pytest
from unittest.mock import MagicMock
from fastapi import HTTPException, Request, status
from fastapi.testclient import TestClient

from database import engine, SessionLocal
from models import Base, Gig, Bid, GigStatus, BidStatus
from realtime import RealtimeGateway, get_realtime
from auth import resolve_account
from main import app

OWNER_ID = 1
OTHER_CLIENT_ID = 2
F1, F2, F3 = 11, 12, 13


class RecordingGateway(RealtimeGateway):
    def __init__(self):
        self.pushes = []
        self.broadcasts = []

    async def push_to_user(self, user_id, event, payload):
        self.pushes.append((user_id, event, payload))

    async def broadcast(self, room, event, payload):
        self.broadcasts.append((room, event, payload))

    def events_for(self, user_id):
        return [event for uid, event, _ in self.pushes if uid == user_id]


def fake_account(request: Request):
    user_id = request.headers.get("X-User-Id")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return {"id": int(user_id), "name": f"User {user_id}"}


def as_user(user_id):
    return {"X-User-Id": str(user_id)}


@pytest.fixture(autouse=True)
def setup_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def rabbitmq(monkeypatch):
    pika = MagicMock()
    monkeypatch.setattr("events.pika", pika)
    return pika


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def realtime():
    return RecordingGateway()


@pytest.fixture
def client(realtime):
    app.dependency_overrides[resolve_account] = fake_account
    app.dependency_overrides[get_realtime] = lambda: realtime
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_gig(db, owner_id=OWNER_ID, title="Build a landing page", status=GigStatus.OPEN):
    gig = Gig(owner_id=owner_id, title=title, description="A one page marketing site", budget=500.0, status=status)
    db.add(gig)
    db.commit()
    db.refresh(gig)
    return gig


def make_bid(db, gig, freelancer_id, price=400.0, status=BidStatus.PENDING):
    bid = Bid(gig_id=gig.id, freelancer_id=freelancer_id, message="I can deliver this in a week", price=price, status=status)
    db.add(bid)
    db.commit()
    db.refresh(bid)
    return bid


@pytest.fixture
def open_gig(db):
    """G1 owned by OWNER_ID with pending bids B1, B2, B3 from F1, F2, F3."""
    gig = make_gig(db)
    bids = [make_bid(db, gig, freelancer_id) for freelancer_id in (F1, F2, F3)]
    return gig, bids
