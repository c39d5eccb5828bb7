"""
Mailbox push-subscription listener.

Cursor policy: the persisted last_history_id starts empty; the first notification
bootstraps by scanning a few recent unread messages and stores the notification's
historyId. After that each notification replays "message added" history since the
cursor and then advances it to the notification's historyId even when individual
messages failed. A message that fails processing is therefore never retried.
The cursor only moves forward, so an older notification that finishes after a newer
one leaves it where the newer one put it.
"""
import asyncio
import base64
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from sqlalchemy.orm import Session

from procurement.errors import MailboxError
from procurement.models.mailbox import MailboxCursor
from procurement.services.gmail_client import extract_body, header
from procurement.services.ingestion import InboundMessage, ProposalPipeline

logger = logging.getLogger(__name__)

# Retry interval after a failed watch renewal
_RENEW_RETRY_SEC = 3600
_MIN_RENEW_DELAY_SEC = 60


class MailboxClient(Protocol):
    async def watch(self, topic: str, label_ids: list[str] | None = None) -> dict[str, Any]: ...
    async def list_added_message_ids(self, start_history_id: str) -> list[str]: ...
    async def list_message_ids(self, query: str, max_results: int) -> list[str]: ...
    async def get_message(self, message_id: str) -> dict[str, Any]: ...


def decode_notification(envelope: dict[str, Any]) -> dict[str, Any]:
    """Pub/Sub push envelope -> {"emailAddress": ..., "historyId": ...}."""
    data = ((envelope or {}).get("message") or {}).get("data")
    if not data:
        raise ValueError("Push envelope has no message.data")
    decoded = json.loads(base64.b64decode(data + "=" * (-len(data) % 4)).decode("utf-8"))
    if "historyId" not in decoded:
        raise ValueError("Push payload has no historyId")
    decoded["historyId"] = str(decoded["historyId"])
    return decoded


def renewal_delay(expiration: datetime, now: datetime | None = None, fraction: float = 0.85) -> float:
    """Seconds to wait before renewing a watch that expires at `expiration`."""
    now = now or datetime.now(timezone.utc)
    lifetime = (expiration - now).total_seconds()
    return max(lifetime * fraction, _MIN_RENEW_DELAY_SEC)


def _history_after(current: str, last: str) -> bool:
    try:
        return int(current) > int(last)
    except ValueError:
        return current != last


class PushListener:
    def __init__(
        self,
        mailbox: MailboxClient,
        pipeline: ProposalPipeline,
        session_factory: Callable[[], Session],
        mailbox_name: str = "me",
        topic: str | None = None,
        renewal_fraction: float = 0.85,
        bootstrap_limit: int = 5,
    ):
        self.mailbox = mailbox
        self.pipeline = pipeline
        self.session_factory = session_factory
        self.mailbox_name = mailbox_name
        self.topic = topic
        self.renewal_fraction = renewal_fraction
        self.bootstrap_limit = bootstrap_limit
        self._renew_task: asyncio.Task | None = None

    def _cursor(self, db: Session) -> MailboxCursor:
        cursor = db.query(MailboxCursor).filter(MailboxCursor.mailbox == self.mailbox_name).first()
        if cursor is None:
            cursor = MailboxCursor(mailbox=self.mailbox_name)
            db.add(cursor)
            db.flush()
        return cursor

    async def handle_notification(self, envelope: dict[str, Any]) -> dict[str, int]:
        """Never raises; returns per-batch counts for logging and tests."""
        summary = {"seen": 0, "processed": 0, "dropped": 0, "failed": 0}
        try:
            data = decode_notification(envelope)
        except (ValueError, TypeError) as e:
            logger.warning("Ignoring undecodable push notification: %s", e)
            return summary
        current = data["historyId"]
        db = self.session_factory()
        try:
            cursor = self._cursor(db)
            last = cursor.last_history_id
            if not last:
                logger.info("No push cursor yet, scanning recent unread messages")
                ids = await self.mailbox.list_message_ids("is:unread", self.bootstrap_limit)
            elif not _history_after(current, last):
                logger.info("Notification historyId=%s is not past cursor %s, skipping", current, last)
                return summary
            else:
                logger.info("Replaying history from %s to %s", last, current)
                ids = await self.mailbox.list_added_message_ids(last)
            await self._process_batch(db, ids, summary)
            self._advance_cursor(db, current)
            logger.info("Push batch done: %s", summary)
        except MailboxError:
            db.rollback()
            logger.error("Mailbox request failed, cursor not advanced", exc_info=True)
        except Exception:
            db.rollback()
            logger.exception("Unexpected error handling push notification")
        finally:
            db.close()
        return summary

    def _advance_cursor(self, db: Session, current: str) -> None:
        """Move the cursor forward only; an overlapping newer notification may already have passed it."""
        cursor = (
            db.query(MailboxCursor)
            .filter(MailboxCursor.mailbox == self.mailbox_name)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if cursor is None:
            cursor = self._cursor(db)
        stored = cursor.last_history_id
        if stored and not _history_after(current, stored):
            logger.info("Cursor already at %s, not moving it back to %s", stored, current)
            db.commit()
            return
        cursor.last_history_id = current
        db.commit()

    async def _process_batch(self, db: Session, message_ids: list[str], summary: dict[str, int]) -> None:
        for message_id in message_ids:
            summary["seen"] += 1
            try:
                result = await self.process_message(db, message_id)
            except Exception:
                db.rollback()
                summary["failed"] += 1
                logger.warning("Failed to process message %s", message_id, exc_info=True)
                continue
            summary["processed" if result else "dropped"] += 1

    async def process_message(self, db: Session, message_id: str) -> bool:
        message = await self.mailbox.get_message(message_id)
        sender = header(message, "From")
        if not sender:
            logger.info("Message %s has no From header, skipping", message_id)
            return False
        inbound = InboundMessage(
            sender=sender,
            subject=header(message, "Subject") or "",
            body=extract_body(message.get("payload") or {}),
            message_id=message_id,
        )
        result = await self.pipeline.ingest(db, inbound, require_subject=True)
        return result.processed

    # --- watch lifecycle ---

    async def renew_watch(self) -> datetime:
        response = await self.mailbox.watch(self.topic)
        expiration = datetime.fromtimestamp(int(response["expiration"]) / 1000, tz=timezone.utc)
        db = self.session_factory()
        try:
            cursor = self._cursor(db)
            cursor.watch_expiration = expiration
            db.commit()
        finally:
            db.close()
        logger.info("Mailbox watch set up, expires %s", expiration.isoformat())
        return expiration

    async def _renewal_loop(self) -> None:
        while True:
            try:
                expiration = await self.renew_watch()
                delay = renewal_delay(expiration, fraction=self.renewal_fraction)
            except Exception:
                logger.error("Mailbox watch renewal failed, retrying in %ss", _RENEW_RETRY_SEC, exc_info=True)
                delay = _RENEW_RETRY_SEC
            await asyncio.sleep(delay)

    def start(self) -> None:
        if not self.topic:
            logger.warning("No Pub/Sub topic configured; mailbox push notifications will not arrive")
            return
        self._renew_task = asyncio.create_task(self._renewal_loop())

    async def stop(self) -> None:
        if self._renew_task is not None:
            self._renew_task.cancel()
            try:
                await self._renew_task
            except asyncio.CancelledError:
                pass
            self._renew_task = None
