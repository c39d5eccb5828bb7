"""
Proposal ingestion pipeline shared by the webhook, the mailbox push listener and
manual submission: correlate -> extract -> upsert -> publish.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from procurement.errors import CorrelationFailure, ExtractionError
from procurement.models.proposal import Proposal
from procurement.models.rfp import RFP
from procurement.models.vendor import Vendor
from procurement.services import proposal_store
from procurement.services.ai_service import Oracle
from procurement.services.correlator import Correlator
from procurement.services.extraction import extract_proposal
from procurement.services.fanout import Publisher, publish_proposal
from procurement.services.proposal_store import ReplySource

logger = logging.getLogger(__name__)


@dataclass
class InboundMessage:
    sender: str
    subject: str | None
    body: str
    message_id: str | None = None


@dataclass
class IngestionResult:
    status: str  # "processed" | "dropped"
    reason: str = ""
    proposal: Proposal | None = None

    @property
    def processed(self) -> bool:
        return self.status == "processed"


class ProposalPipeline:
    def __init__(self, oracle: Oracle | None, publisher: Publisher | None, correlator: Correlator | None = None):
        self.oracle = oracle
        self.publisher = publisher
        self.correlator = correlator or Correlator()

    async def ingest(self, db: Session, message: InboundMessage, require_subject: bool = False) -> IngestionResult:
        """
        Process one automated reply. Correlation and extraction failures drop the
        message and are reported in the result; PersistenceError propagates.
        """
        try:
            match = self.correlator.correlate(db, message.sender, message.subject, require_subject=require_subject)
        except CorrelationFailure as e:
            logger.info("Dropping message %s: %s", message.message_id or "(webhook)", e)
            return IngestionResult("dropped", str(e))

        if not (message.body or "").strip():
            logger.info("Dropping message %s: empty body", message.message_id or "(webhook)")
            return IngestionResult("dropped", "Could not extract email body")

        try:
            fields = await extract_proposal(message.body, self.oracle)
        except ExtractionError as e:
            logger.warning("Dropping message %s from %s: extraction failed: %s",
                           message.message_id or "(webhook)", match.vendor.email, e)
            return IngestionResult("dropped", str(e))

        proposal = proposal_store.upsert(db, match.rfp.id, match.vendor.id, ReplySource.automated(message.body), fields)
        await publish_proposal(db, proposal, self.publisher)
        return IngestionResult("processed", proposal=proposal)

    async def submit_manual(self, db: Session, rfp: RFP, vendor: Vendor, body: str) -> Proposal:
        """Manual path: the (RFP, vendor) pair is given; every failure propagates to the caller."""
        fields = await extract_proposal(body, self.oracle)
        proposal = proposal_store.upsert(db, rfp.id, vendor.id, ReplySource.manual(body), fields)
        logger.info("Manual proposal submitted for vendor %s on rfp_id=%s", vendor.name, rfp.id)
        await publish_proposal(db, proposal, self.publisher)
        return proposal
