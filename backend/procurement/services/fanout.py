"""
Real-Time Fanout.

The pipeline only knows the Publisher protocol ("deliver this event to subscribers of
channel C"). ChannelHub is the in-process WebSocket implementation wired up in main.py.
"""
import asyncio
import logging
from typing import Any, Protocol

from fastapi import WebSocket
from sqlalchemy.orm import Session

from procurement.errors import TransportError
from procurement.models.proposal import Proposal
from procurement.services import proposal_store

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "global"
NEW_PROPOSAL_EVENT = "new-proposal"
PROPOSAL_UPDATE_EVENT = "proposal-update"
# A client that cannot take a frame within this many seconds is dropped.
_SEND_TIMEOUT_SEC = 5


def rfp_channel(rfp_id: Any) -> str:
    return f"rfp-{rfp_id}"


class Publisher(Protocol):
    async def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        """Raise TransportError when the event cannot be handed to the transport."""
        ...


class ChannelHub:
    """Channel membership for connected WebSocket clients. Every client is in the global channel."""

    def __init__(self, send_timeout: float = _SEND_TIMEOUT_SEC):
        self.send_timeout = send_timeout
        self._channels: dict[str, set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        await self.join(ws, GLOBAL_CHANNEL)

    async def join(self, ws: WebSocket, channel: str) -> None:
        async with self._lock:
            self._channels.setdefault(channel, set()).add(ws)
        logger.info("Client joined channel %s", channel)

    async def leave(self, ws: WebSocket, channel: str) -> None:
        async with self._lock:
            members = self._channels.get(channel)
            if members is not None:
                members.discard(ws)
                if not members:
                    del self._channels[channel]

    async def disconnect(self, ws: WebSocket) -> None:
        async with self._lock:
            for channel in list(self._channels):
                self._channels[channel].discard(ws)
                if not self._channels[channel]:
                    del self._channels[channel]

    def subscriber_count(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))

    async def _deliver(self, ws: WebSocket, channel: str, message: dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(ws.send_json(message), self.send_timeout)
        except asyncio.TimeoutError:
            logger.info("Dropping stalled client from %s after %ss", channel, self.send_timeout)
            await self.disconnect(ws)
        except Exception:
            # Dead socket; drop it so later publishes skip it.
            logger.info("Dropping unreachable client from %s", channel)
            await self.disconnect(ws)

    async def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        """Send to every member concurrently; each send is bounded by send_timeout."""
        async with self._lock:
            members = list(self._channels.get(channel, ()))
        message = {"event": event, "data": payload}
        await asyncio.gather(*(self._deliver(ws, channel, message) for ws in members))


def proposal_event_payload(proposal: Proposal, stats: proposal_store.ResponseStats) -> dict[str, Any]:
    vendor = proposal.vendor
    return {
        "id": proposal.id,
        "rfpId": proposal.rfp_id,
        "vendor": {
            "id": vendor.id,
            "name": vendor.name,
            "email": vendor.email,
            "category": vendor.category,
        },
        "automatedReply": proposal.automated_reply,
        "manualReply": proposal.manual_reply,
        "replySource": proposal.last_reply_kind,
        "extractedData": proposal.extracted_data,
        "receivedAt": proposal.received_at.isoformat() if proposal.received_at else None,
        "responseStats": {
            "totalResponses": stats.total_responses,
            "totalVendorsContacted": stats.total_vendors_contacted,
            "responseRate": stats.response_rate,
        },
    }


async def publish_proposal(db: Session, proposal: Proposal, publisher: Publisher | None) -> bool:
    """
    Publish to the RFP's channel and the global channel; each channel fails on its own.
    Returns False when nothing was published; never raises.
    """
    if publisher is None:
        logger.warning("No real-time transport available, skipping notification for proposal_id=%s", proposal.id)
        return False
    try:
        stats = proposal_store.response_stats(db, proposal.rfp_id)
        payload = proposal_event_payload(proposal, stats)
    except Exception:
        logger.warning("Could not build real-time payload for proposal_id=%s", proposal.id, exc_info=True)
        return False
    delivered = []
    for channel, event in ((rfp_channel(proposal.rfp_id), NEW_PROPOSAL_EVENT), (GLOBAL_CHANNEL, PROPOSAL_UPDATE_EVENT)):
        try:
            await publisher.publish(channel, event, payload)
        except TransportError as e:
            logger.warning("Real-time publish to %s failed for proposal_id=%s: %s", channel, proposal.id, e)
            continue
        except Exception:
            logger.warning("Real-time publish to %s failed for proposal_id=%s", channel, proposal.id, exc_info=True)
            continue
        delivered.append(channel)
    if delivered:
        logger.info("Published proposal_id=%s to %s (%s/%s responded)", proposal.id,
                    ", ".join(delivered), stats.total_responses, stats.total_vendors_contacted)
    return bool(delivered)
