"""
Vendor Email Correlator: resolve an inbound message to a (vendor, RFP) pair.

Inbound mail carries no reliable RFP identifier, so the RFP is picked by a
resolution strategy. The only strategy shipped is the most-recent-proposal
heuristic, which misattributes replies when a vendor has several open RFPs.
"""
import logging
import re
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.orm import Session

from procurement.errors import CorrelationFailure
from procurement.models.proposal import Proposal
from procurement.models.rfp import RFP
from procurement.models.vendor import Vendor

logger = logging.getLogger(__name__)

_BRACKETED = re.compile(r"<(.+?)>")
# Push-path noise filter; reworded subjects are false negatives.
REPLY_SUBJECT_PATTERN = re.compile(r"RE:|RFP|proposal", re.I)


def extract_address(header_value: str | None) -> str:
    """`"Display Name <addr>"` -> `addr`; otherwise the whole value, trimmed."""
    value = header_value or ""
    m = _BRACKETED.search(value)
    return (m.group(1) if m else value).strip()


def subject_matches(subject: str | None) -> bool:
    return bool(REPLY_SUBJECT_PATTERN.search(subject or ""))


@dataclass
class Correlation:
    vendor: Vendor
    rfp: RFP


class RFPResolutionStrategy(Protocol):
    def resolve(self, db: Session, vendor: Vendor) -> RFP | None:
        ...


class MostRecentProposalStrategy:
    """Attribute the reply to the RFP of the vendor's most recently created proposal."""

    def resolve(self, db: Session, vendor: Vendor) -> RFP | None:
        latest = (
            db.query(Proposal)
            .filter(Proposal.vendor_id == vendor.id)
            .order_by(Proposal.created_at.desc(), Proposal.id.desc())
            .first()
        )
        return latest.rfp if latest else None


class Correlator:
    def __init__(self, strategy: RFPResolutionStrategy | None = None):
        self.strategy = strategy or MostRecentProposalStrategy()

    def find_vendor(self, db: Session, sender: str | None) -> Vendor | None:
        address = extract_address(sender)
        if not address:
            return None
        # Vendors are persisted lower-cased; match as stored.
        return db.query(Vendor).filter(Vendor.email == address).first()

    def correlate(self, db: Session, sender: str | None, subject: str | None = None, require_subject: bool = False) -> Correlation:
        """Raise CorrelationFailure when the message cannot be attributed."""
        if require_subject and not subject_matches(subject):
            raise CorrelationFailure(f"Subject not related to an RFP: {subject!r}")
        vendor = self.find_vendor(db, sender)
        if vendor is None:
            raise CorrelationFailure(f"No vendor registered for {extract_address(sender)!r}")
        rfp = self.strategy.resolve(db, vendor)
        if rfp is None:
            raise CorrelationFailure(f"No RFP has been dispatched to vendor {vendor.email}")
        logger.info("Correlated reply from %s to rfp_id=%s", vendor.email, rfp.id)
        return Correlation(vendor=vendor, rfp=rfp)
