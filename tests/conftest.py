"""Shared fixtures: in-memory database, oracle/publisher/mailbox doubles, sample rows."""

import asyncio
import base64
import json

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from procurement.errors import MailboxError, TransportError
from procurement.models.base import Base
import procurement.models  # noqa: F401 - register all tables
from procurement.models.rfp import RFP, RFPStatus
from procurement.models.vendor import Vendor
from procurement.services import proposal_store


class FakeOracle:
    """Returns `reply` (a dict, or a callable of (system, user)) or raises `error`."""

    def __init__(self, reply=None, error=None):
        self.reply = reply if reply is not None else {}
        self.error = error
        self.calls = []

    async def complete_json(self, system, user):
        self.calls.append((system, user))
        if self.error is not None:
            raise self.error
        return self.reply(system, user) if callable(self.reply) else dict(self.reply)


class RecordingPublisher:
    def __init__(self, fail=False, fail_channels=()):
        self.fail = fail
        self.fail_channels = set(fail_channels)
        self.events = []

    async def publish(self, channel, event, payload):
        if self.fail or channel in self.fail_channels:
            raise TransportError("transport down")
        self.events.append((channel, event, payload))


def gmail_message(sender, subject, body, message_id="m1"):
    """Build a Gmail API `format=full` message with a single text/plain part."""
    data = base64.urlsafe_b64encode(body.encode("utf-8")).decode("ascii").rstrip("=")
    return {
        "id": message_id,
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "From", "value": sender},
                {"name": "Subject", "value": subject},
            ],
            "body": {"size": 0},
            "parts": [{"mimeType": "text/plain", "body": {"data": data}}],
        },
    }


def push_envelope(history_id, email="buyer@example.com"):
    data = base64.b64encode(json.dumps({"emailAddress": email, "historyId": history_id}).encode()).decode()
    return {"message": {"data": data, "messageId": "pubsub-1"}, "subscription": "projects/p/subscriptions/s"}


class FakeMailbox:
    def __init__(self, messages=None, history=None, unread=None):
        self.messages = {m["id"]: m for m in (messages or [])}
        self.history = list(history or [])
        self.unread = list(unread or [])
        self.history_calls = []
        self.unread_calls = []
        self.fail_history = False
        self.history_delay = 0
        self.watch_calls = 0
        self.expiration_ms = "4102444800000"  # 2100-01-01

    async def watch(self, topic, label_ids=None):
        self.watch_calls += 1
        return {"historyId": "1", "expiration": self.expiration_ms}

    async def list_added_message_ids(self, start_history_id):
        self.history_calls.append(start_history_id)
        if self.history_delay:
            await asyncio.sleep(self.history_delay)
        if self.fail_history:
            raise MailboxError("history unavailable")
        return list(self.history)

    async def list_message_ids(self, query, max_results):
        self.unread_calls.append((query, max_results))
        return self.unread[:max_results]

    async def get_message(self, message_id):
        if message_id not in self.messages:
            raise MailboxError(f"message {message_id} not found")
        return self.messages[message_id]


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def vendor(db):
    v = Vendor(name="Acme Supplies", email="a@x.com", category="Hardware", contact_person="Ann")
    db.add(v)
    db.commit()
    db.refresh(v)
    return v


@pytest.fixture
def other_vendor(db):
    v = Vendor(name="Bolt Traders", email="b@y.com", category="Hardware")
    db.add(v)
    db.commit()
    db.refresh(v)
    return v


@pytest.fixture
def rfp(db):
    r = RFP(
        original_description="20 laptops with 16GB RAM, budget $50,000, delivery by 2030-06-30, 2 year warranty",
        structured_data={
            "items": [{"name": "laptop", "specs": "16GB RAM", "quantity": 20}],
            "budget": 50000,
            "deadline": "2030-06-30",
            "paymentTerms": "Net 30",
            "warranty": "2 years",
        },
        category="Hardware",
        status=RFPStatus.PUBLISHED,
    )
    db.add(r)
    db.commit()
    db.refresh(r)
    return r


@pytest.fixture
def dispatched(db, rfp, vendor):
    """The sample RFP sent to the sample vendor."""
    proposal_store.record_dispatch(db, rfp.id, vendor.id)
    return rfp


@pytest.fixture
def extraction_reply():
    return {
        "totalPrice": 5000,
        "deliveryDate": "2030-05-01",
        "warrantyProvided": "2 years",
        "notes": "Free shipping",
    }
