import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from procurement.api.deps import get_pipeline, get_push_listener
from procurement.database import get_db
from procurement.errors import ExtractionError, PersistenceError
from procurement.models.proposal import Proposal
from procurement.models.rfp import RFP, RFPStatus
from procurement.models.vendor import Vendor
from procurement.schemas.proposal import (
    InboundEmail,
    ManualProposalBody,
    ProposalResponse,
    RFPStatusResponse,
    RFPStatusUpdate,
    WebhookAck,
)
from procurement.services import compliance, proposal_store
from procurement.services.ingestion import InboundMessage

router = APIRouter(prefix="/proposals", tags=["proposals"])
logger = logging.getLogger(__name__)

_STATUS_ALIASES = {"completed": RFPStatus.CLOSED}


def _get_rfp_or_404(db: Session, rfp_id: int) -> RFP:
    rfp = db.query(RFP).filter(RFP.id == rfp_id).first()
    if not rfp:
        raise HTTPException(status_code=404, detail="RFP not found")
    return rfp


async def _rfp_with_proposals(db: Session, rfp: RFP, oracle) -> RFPStatusResponse:
    proposals = proposal_store.list_for_rfp(db, rfp.id, replied_only=True)
    await compliance.ensure_evaluated(db, rfp, proposals, oracle)
    return RFPStatusResponse(rfp=rfp, proposals=proposals, proposals_count=len(proposals))


@router.post("/webhook", response_model=WebhookAck)
async def inbound_webhook(request: Request, db: Session = Depends(get_db), pipeline=Depends(get_pipeline)):
    """
    Inbound-mail webhook ({from, to, subject, html|text}). Always answers 200 so the
    provider does not redeliver; the real outcome is logged.
    """
    try:
        payload = InboundEmail.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        logger.warning("Webhook payload rejected: %s", e)
        return WebhookAck(message="Payload not understood")
    if not payload.sender:
        logger.info("Webhook message without sender, ignoring")
        return WebhookAck(message="No sender")

    message = InboundMessage(sender=payload.sender, subject=payload.subject, body=payload.body)
    try:
        result = await pipeline.ingest(db, message)
    except Exception:
        db.rollback()
        logger.error("Webhook ingestion failed for sender %s", payload.sender, exc_info=True)
        return WebhookAck(message="Received")
    if not result.processed:
        return WebhookAck(message=result.reason or "Not processed")
    logger.info("Webhook stored proposal_id=%s", result.proposal.id)
    return WebhookAck(message="Proposal processed successfully", proposal_id=result.proposal.id)


@router.post("/gmail-webhook", response_model=WebhookAck)
async def gmail_push_webhook(request: Request, background_tasks: BackgroundTasks, listener=Depends(get_push_listener)):
    """Pub/Sub push endpoint. Processing runs after the response; the ack is immediate."""
    try:
        envelope = await request.json()
    except ValueError as e:
        logger.warning("Push webhook body is not JSON: %s", e)
        return WebhookAck(message="Received")
    if listener is None:
        logger.warning("Push notification received but the mailbox listener is disabled")
        return WebhookAck(message="Received")
    background_tasks.add_task(listener.handle_notification, envelope)
    return WebhookAck(message="Received")


@router.post("/manual", response_model=ProposalResponse, status_code=201)
async def submit_manual_proposal(payload: ManualProposalBody, db: Session = Depends(get_db), pipeline=Depends(get_pipeline)):
    if not payload.email_body.strip():
        raise HTTPException(status_code=400, detail="emailBody must be a non-empty string")
    rfp = _get_rfp_or_404(db, payload.rfp_id)
    vendor = db.query(Vendor).filter(Vendor.id == payload.vendor_id).first()
    if not vendor:
        raise HTTPException(status_code=404, detail="Vendor not found")
    try:
        return await pipeline.submit_manual(db, rfp, vendor, payload.email_body)
    except ExtractionError as e:
        logger.warning("Manual proposal extraction failed for rfp_id=%s vendor_id=%s: %s", rfp.id, vendor.id, e)
        raise HTTPException(status_code=503, detail="AI service unavailable. Please try again later.") from e
    except PersistenceError as e:
        logger.error("Manual proposal could not be saved: %s", e)
        raise HTTPException(status_code=500, detail="Failed to save proposal") from e


@router.get("", response_model=list[ProposalResponse])
def list_proposals(db: Session = Depends(get_db)):
    return (
        db.query(Proposal)
        .filter(Proposal.last_reply_kind.isnot(None))
        .order_by(Proposal.received_at.desc().nulls_last(), Proposal.id.desc())
        .all()
    )


@router.get("/rfp/{rfp_id}", response_model=RFPStatusResponse)
async def proposals_for_rfp(rfp_id: int, db: Session = Depends(get_db), pipeline=Depends(get_pipeline)):
    """Replied proposals for an RFP; unevaluated ones get a compliance verdict on the way out."""
    rfp = _get_rfp_or_404(db, rfp_id)
    return await _rfp_with_proposals(db, rfp, pipeline.oracle)


@router.patch("/rfp/{rfp_id}", response_model=RFPStatusResponse)
async def update_rfp_status(rfp_id: int, payload: RFPStatusUpdate, db: Session = Depends(get_db),
                            pipeline=Depends(get_pipeline)):
    status = (payload.status or "").strip().lower()
    status = _STATUS_ALIASES.get(status, status)
    if status not in RFPStatus.ALL:
        raise HTTPException(status_code=400, detail=f"Invalid status. Must be one of: {', '.join(RFPStatus.ALL)}, completed")
    rfp = _get_rfp_or_404(db, rfp_id)
    rfp.status = status
    db.commit()
    db.refresh(rfp)
    logger.info("RFP %s status set to %s", rfp.id, status)
    return await _rfp_with_proposals(db, rfp, pipeline.oracle)


@router.post("/{proposal_id}/compliance/reset", response_model=ProposalResponse)
def reset_compliance(proposal_id: int, db: Session = Depends(get_db)):
    """Clear the cached verdict; the next read of the RFP's proposals re-evaluates it."""
    proposal = db.query(Proposal).filter(Proposal.id == proposal_id).first()
    if not proposal:
        raise HTTPException(status_code=404, detail="Proposal not found")
    compliance.invalidate(db, proposal)
    db.refresh(proposal)
    return proposal
