"""Mailbox push notifications: bootstrap, history replay, cursor handling, watch renewal."""

import asyncio
import base64
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeMailbox, FakeOracle, RecordingPublisher, gmail_message, push_envelope
from procurement.models.mailbox import MailboxCursor
from procurement.models.proposal import Proposal
from procurement.services.gmail_client import extract_body, header
from procurement.services.ingestion import ProposalPipeline
from procurement.services.push_listener import PushListener, decode_notification, renewal_delay


def _b64url(text):
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def make_listener(session_factory, publisher, extraction_reply):
    def build(mailbox, oracle=None):
        pipeline = ProposalPipeline(oracle or FakeOracle(extraction_reply), publisher)
        return PushListener(mailbox, pipeline, session_factory, mailbox_name="me", bootstrap_limit=5)
    return build


def _cursor(session_factory):
    db = session_factory()
    try:
        cursor = db.query(MailboxCursor).filter(MailboxCursor.mailbox == "me").first()
        return cursor.last_history_id if cursor else None
    finally:
        db.close()


def _set_cursor(session_factory, history_id):
    db = session_factory()
    try:
        db.add(MailboxCursor(mailbox="me", last_history_id=history_id))
        db.commit()
    finally:
        db.close()


class TestNotificationDecoding:

    def test_decode(self):
        assert decode_notification(push_envelope(1234)) == {"emailAddress": "buyer@example.com", "historyId": "1234"}

    @pytest.mark.parametrize("envelope", [{}, {"message": {}}, {"message": {"data": _b64url('{"emailAddress": "x"}')}}])
    def test_invalid(self, envelope):
        with pytest.raises(ValueError):
            decode_notification(envelope)


class TestBodyExtraction:

    def test_top_level_body(self):
        assert extract_body({"body": {"data": _b64url("plain body")}}) == "plain body"

    def test_nested_parts(self):
        payload = {
            "mimeType": "multipart/mixed",
            "body": {},
            "parts": [
                {"mimeType": "application/pdf", "body": {"attachmentId": "a1"}},
                {"mimeType": "multipart/alternative", "body": {}, "parts": [
                    {"mimeType": "text/html", "body": {"data": _b64url("<p>quote</p>")}},
                ]},
            ],
        }
        assert extract_body(payload) == "<p>quote</p>"

    def test_no_body(self):
        assert extract_body({"parts": [{"mimeType": "image/png", "body": {}}]}) == ""

    def test_header_lookup_is_case_insensitive(self):
        msg = gmail_message("A <a@x.com>", "RE: RFP", "hi")
        assert header(msg, "from") == "A <a@x.com>"
        assert header(msg, "X-Missing") is None


class TestHandleNotification:

    def test_bootstrap_scans_unread_and_stores_cursor(self, session_factory, make_listener, dispatched):
        mailbox = FakeMailbox(messages=[gmail_message("A <a@x.com>", "RE: RFP", "Total $5,000", "m1")], unread=["m1"])
        summary = asyncio.run(make_listener(mailbox).handle_notification(push_envelope(100)))

        assert summary == {"seen": 1, "processed": 1, "dropped": 0, "failed": 0}
        assert mailbox.unread_calls == [("is:unread", 5)]
        assert mailbox.history_calls == []
        assert _cursor(session_factory) == "100"

    def test_replays_history_since_cursor(self, session_factory, make_listener, dispatched, publisher):
        _set_cursor(session_factory, "100")
        mailbox = FakeMailbox(messages=[gmail_message("a@x.com", "RE: RFP", "Total $5,000", "m2")], history=["m2"])
        summary = asyncio.run(make_listener(mailbox).handle_notification(push_envelope(150)))

        assert mailbox.history_calls == ["100"]
        assert summary["processed"] == 1
        assert _cursor(session_factory) == "150"
        assert len(publisher.events) == 2

    def test_stale_notification_skipped(self, session_factory, make_listener, dispatched):
        _set_cursor(session_factory, "200")
        mailbox = FakeMailbox(history=["m1"])
        summary = asyncio.run(make_listener(mailbox).handle_notification(push_envelope(200)))
        assert summary["seen"] == 0
        assert mailbox.history_calls == []

    def test_per_message_failures_are_isolated(self, session_factory, make_listener, dispatched):
        _set_cursor(session_factory, "100")
        mailbox = FakeMailbox(
            messages=[
                gmail_message("a@x.com", "RE: RFP", "Total $5,000", "good"),
                gmail_message("a@x.com", "Lunch on friday?", "not a quote", "noise"),
                gmail_message("stranger@z.com", "RE: RFP", "Total $1", "unknown"),
            ],
            history=["missing", "noise", "unknown", "good"],
        )
        summary = asyncio.run(make_listener(mailbox).handle_notification(push_envelope(300)))

        assert summary == {"seen": 4, "processed": 1, "dropped": 2, "failed": 1}
        # The cursor advances past the failed message as well.
        assert _cursor(session_factory) == "300"
        db = session_factory()
        try:
            assert db.query(Proposal).filter(Proposal.last_reply_kind.isnot(None)).count() == 1
        finally:
            db.close()

    def test_history_failure_keeps_cursor(self, session_factory, make_listener, dispatched):
        _set_cursor(session_factory, "100")
        mailbox = FakeMailbox()
        mailbox.fail_history = True
        summary = asyncio.run(make_listener(mailbox).handle_notification(push_envelope(400)))
        assert summary["seen"] == 0
        assert _cursor(session_factory) == "100"

    def test_extraction_failure_counts_as_dropped(self, session_factory, make_listener, dispatched):
        _set_cursor(session_factory, "100")
        mailbox = FakeMailbox(messages=[gmail_message("a@x.com", "RE: RFP", "Total $5,000", "m1")], history=["m1"])
        listener = make_listener(mailbox, oracle=FakeOracle(error=ValueError("bad json")))
        summary = asyncio.run(listener.handle_notification(push_envelope(101)))
        assert summary["dropped"] == 1
        assert _cursor(session_factory) == "101"

    def test_overlapping_notifications_never_move_cursor_back(self, session_factory, make_listener, dispatched):
        _set_cursor(session_factory, "5")
        slow_mailbox, fast_mailbox = FakeMailbox(), FakeMailbox()
        slow_mailbox.history_delay = 0.05
        older, newer = make_listener(slow_mailbox), make_listener(fast_mailbox)

        async def overlap():
            await asyncio.gather(
                older.handle_notification(push_envelope(10)),
                newer.handle_notification(push_envelope(12)),
            )

        asyncio.run(overlap())

        assert slow_mailbox.history_calls == ["5"]
        assert fast_mailbox.history_calls == ["5"]
        assert _cursor(session_factory) == "12"

    def test_undecodable_envelope(self, make_listener):
        summary = asyncio.run(make_listener(FakeMailbox()).handle_notification({"message": {"data": "!!!"}}))
        assert summary["seen"] == 0


class TestWatchRenewal:

    def test_renewal_delay_fraction(self):
        now = datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert renewal_delay(now + timedelta(days=7), now=now) == pytest.approx(7 * 86400 * 0.85)

    def test_renewal_delay_floor(self):
        now = datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert renewal_delay(now - timedelta(hours=1), now=now) == 60

    def test_renew_watch_persists_expiration(self, session_factory, make_listener):
        mailbox = FakeMailbox()
        listener = make_listener(mailbox)
        listener.topic = "projects/p/topics/gmail"
        expiration = asyncio.run(listener.renew_watch())

        assert mailbox.watch_calls == 1
        assert expiration.year == 2100
        db = session_factory()
        try:
            assert db.query(MailboxCursor).one().watch_expiration is not None
        finally:
            db.close()

    def test_start_without_topic_is_noop(self, make_listener):
        listener = make_listener(FakeMailbox())
        listener.start()
        assert listener._renew_task is None
