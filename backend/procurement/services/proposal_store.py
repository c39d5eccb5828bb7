"""
Proposal Store & Upsert Engine.

(rfp_id, vendor_id) is the proposal key. Upsert overwrites content and refreshes
received_at; compliance fields are left alone. The responded-set update runs after
the content commit; if it fails the proposal stays recorded but the vendor is not
counted as responded until the next successful ingestion for that pair.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, time, timezone

from sqlalchemy import func, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from procurement.errors import PersistenceError
from procurement.models.proposal import Proposal, ReplyKind
from procurement.models.rfp import rfp_responded_vendors, rfp_sent_vendors
from procurement.services.extraction import ExtractedProposal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplySource:
    """Where a raw reply came from; selects which raw-body field is refreshed."""
    kind: str
    text: str

    @classmethod
    def automated(cls, text: str) -> "ReplySource":
        return cls(ReplyKind.AUTOMATED, text)

    @classmethod
    def manual(cls, text: str) -> "ReplySource":
        return cls(ReplyKind.MANUAL, text)


@dataclass(frozen=True)
class ResponseStats:
    total_responses: int
    total_vendors_contacted: int

    @property
    def pending_responses(self) -> int:
        return max(self.total_vendors_contacted - self.total_responses, 0)

    @property
    def response_rate(self) -> int:
        return response_rate(self.total_responses, self.total_vendors_contacted)

    def as_dict(self) -> dict:
        return {
            "totalResponses": self.total_responses,
            "totalVendorsContacted": self.total_vendors_contacted,
            "pendingResponses": self.pending_responses,
            "responseRate": self.response_rate,
        }


def response_rate(responded: int, contacted: int) -> int:
    """Whole-number percentage; 0 when nobody was contacted."""
    if contacted <= 0:
        return 0
    # round-half-up, matching Math.round for non-negative values
    return int(100 * responded / contacted + 0.5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _apply_content(proposal: Proposal, source: ReplySource, fields: ExtractedProposal) -> None:
    if source.kind == ReplyKind.MANUAL:
        proposal.manual_reply = source.text
    else:
        proposal.automated_reply = source.text
    proposal.last_reply_kind = source.kind
    proposal.total_price = fields.total_price
    proposal.delivery_date = datetime.combine(fields.delivery_date, time.min, tzinfo=timezone.utc) if fields.delivery_date else None
    proposal.warranty_provided = fields.warranty_provided
    proposal.notes = fields.notes
    proposal.received_at = _utcnow()


def _find(db: Session, rfp_id: int, vendor_id: int) -> Proposal | None:
    return db.query(Proposal).filter(Proposal.rfp_id == rfp_id, Proposal.vendor_id == vendor_id).first()


def _add_to_set(db: Session, table, rfp_id: int, vendor_id: int) -> bool:
    """Set-union insert; returns True if the vendor was newly added."""
    exists = db.execute(
        select(table.c.vendor_id).where(table.c.rfp_id == rfp_id, table.c.vendor_id == vendor_id)
    ).first()
    if exists:
        return False
    db.execute(insert(table).values(rfp_id=rfp_id, vendor_id=vendor_id))
    return True


def _count(db: Session, table, rfp_id: int) -> int:
    return db.execute(select(func.count()).select_from(table).where(table.c.rfp_id == rfp_id)).scalar_one()


def upsert(db: Session, rfp_id: int, vendor_id: int, source: ReplySource, fields: ExtractedProposal) -> Proposal:
    """
    Create or replace the current proposal for (rfp_id, vendor_id), then add the vendor
    to the RFP's responded-set. Raises PersistenceError if the content write fails.
    """
    try:
        proposal = _find(db, rfp_id, vendor_id)
        created = proposal is None
        if created:
            proposal = Proposal(rfp_id=rfp_id, vendor_id=vendor_id, compliance_fulfilled=None,
                                compliance_reasons=[], compliance_summary="")
            db.add(proposal)
        _apply_content(proposal, source, fields)
        db.commit()
    except IntegrityError:
        # A concurrent ingestion inserted the pair first; overwrite it (last write wins).
        db.rollback()
        proposal = _find(db, rfp_id, vendor_id)
        if proposal is None:
            raise PersistenceError(f"Proposal upsert failed for rfp={rfp_id} vendor={vendor_id}")
        created = False
        _apply_content(proposal, source, fields)
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Proposal upsert failed: {e}") from e
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Proposal upsert failed: {e}") from e

    logger.info("Proposal %s for rfp_id=%s vendor_id=%s (%s)",
                "created" if created else "updated", rfp_id, vendor_id, source.kind)
    try:
        mark_responded(db, rfp_id, vendor_id)
    except PersistenceError:
        # Left inconsistent; the next ingestion for this pair re-applies the union.
        logger.error("rfp_id=%s: proposal stored but vendor_id=%s not counted as responded",
                     rfp_id, vendor_id, exc_info=True)
    db.refresh(proposal)
    return proposal


def mark_responded(db: Session, rfp_id: int, vendor_id: int) -> bool:
    """Add vendor to the RFP's responded-set; a vendor already present is a no-op."""
    try:
        added = _add_to_set(db, rfp_responded_vendors, rfp_id, vendor_id)
        db.commit()
    except IntegrityError:
        # A concurrent ingestion inserted the same member first.
        db.rollback()
        return False
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Responded-set update failed for rfp={rfp_id} vendor={vendor_id}: {e}") from e
    if added:
        logger.info("rfp_id=%s: vendor_id=%s added to responded set", rfp_id, vendor_id)
    return added


def record_dispatch(db: Session, rfp_id: int, vendor_id: int) -> Proposal:
    """
    Register that an RFP was sent to a vendor: add to the sent-to set and make sure a
    proposal row exists for the pair, which is what the correlator resolves replies against.
    A re-dispatch bumps dispatched_at but keeps any reply already recorded.
    """
    try:
        _add_to_set(db, rfp_sent_vendors, rfp_id, vendor_id)
        proposal = _find(db, rfp_id, vendor_id)
        if proposal is None:
            proposal = Proposal(rfp_id=rfp_id, vendor_id=vendor_id, compliance_fulfilled=None,
                                compliance_reasons=[], compliance_summary="")
            db.add(proposal)
        proposal.dispatched_at = _utcnow()
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Dispatch record failed for rfp={rfp_id} vendor={vendor_id}: {e}") from e
    db.refresh(proposal)
    return proposal


def response_stats(db: Session, rfp_id: int) -> ResponseStats:
    """Counts come from the vendor sets, so repeated replies never inflate them."""
    return ResponseStats(
        total_responses=_count(db, rfp_responded_vendors, rfp_id),
        total_vendors_contacted=_count(db, rfp_sent_vendors, rfp_id),
    )


def list_for_rfp(db: Session, rfp_id: int, replied_only: bool = False) -> list[Proposal]:
    q = db.query(Proposal).filter(Proposal.rfp_id == rfp_id)
    if replied_only:
        q = q.filter(Proposal.last_reply_kind.isnot(None))
    return q.order_by(Proposal.received_at.desc().nulls_last(), Proposal.id.desc()).all()
