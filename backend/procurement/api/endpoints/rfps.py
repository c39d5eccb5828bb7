import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from procurement import config
from procurement.api.deps import get_mailer, get_oracle
from procurement.database import get_db
from procurement.errors import PersistenceError
from procurement.models.rfp import RFP, RFPStatus
from procurement.models.vendor import Vendor
from procurement.schemas.rfp import (
    DispatchResponse,
    DispatchResult,
    RFPDraftResponse,
    RFPParseRequest,
    RFPParseResponse,
    RFPResponse,
    RFPStatsResponse,
    RFPWithStats,
    RespondedVendorRow,
    ResponseStats,
    VendorIdsBody,
)
from procurement.services import proposal_store
from procurement.services.ai_service import parse_rfp_description
from procurement.services.mailer import RFP_SUBJECT, render_rfp_email

router = APIRouter(prefix="/rfps", tags=["rfps"])
logger = logging.getLogger(__name__)

_REQUIREMENT_KEYS = ("items", "budget", "deadline", "paymentTerms", "warranty")


def _get_rfp_or_404(db: Session, rfp_id: int) -> RFP:
    rfp = db.query(RFP).filter(RFP.id == rfp_id).first()
    if not rfp:
        raise HTTPException(status_code=404, detail="RFP not found")
    return rfp


def _stats(db: Session, rfp_id: int) -> ResponseStats:
    return ResponseStats(**proposal_store.response_stats(db, rfp_id).as_dict())


@router.post("/parse", response_model=RFPParseResponse, status_code=201)
async def parse_rfp(payload: RFPParseRequest, db: Session = Depends(get_db), oracle=Depends(get_oracle)):
    """Create a draft RFP from a natural-language need and list vendors in matching categories."""
    description = (payload.description or "").strip()
    if not description:
        raise HTTPException(status_code=400, detail="Description is required and must be a non-empty string")
    categories = sorted({c for (c,) in db.query(Vendor.category).distinct().all() if c})
    try:
        parsed = await parse_rfp_description(description, categories, oracle)
    except Exception as e:
        logger.warning("RFP parse failed: %s", e, exc_info=True)
        raise HTTPException(status_code=503, detail="AI service unavailable. Please try again later.") from e

    suggested = [c for c in (parsed.get("suggestedCategories") or []) if isinstance(c, str) and c.strip()]
    if not suggested and parsed.get("category"):
        suggested = [parsed["category"]]
    vendors = []
    if suggested:
        vendors = (
            db.query(Vendor)
            .filter(or_(*[Vendor.category.ilike(f"%{c.strip()}%") for c in suggested]))
            .order_by(Vendor.created_at.desc(), Vendor.id.desc())
            .all()
        )
    rfp = RFP(
        original_description=description,
        structured_data={k: parsed.get(k) for k in _REQUIREMENT_KEYS},
        category=parsed.get("category"),
        status=RFPStatus.DRAFT,
    )
    db.add(rfp)
    db.commit()
    db.refresh(rfp)
    logger.info("RFP %s created (category=%s), %s matching vendors", rfp.id, rfp.category, len(vendors))
    return RFPParseResponse(rfp=rfp, vendors=vendors, vendors_count=len(vendors))


@router.get("/active", response_model=list[RFPWithStats])
def list_active_rfps(db: Session = Depends(get_db)):
    """Published RFPs with response statistics."""
    rfps = db.query(RFP).filter(RFP.status == RFPStatus.PUBLISHED).order_by(RFP.created_at.desc(), RFP.id.desc()).all()
    out = []
    for rfp in rfps:
        row = RFPResponse.model_validate(rfp).model_dump()
        out.append(RFPWithStats(**row, response_stats=_stats(db, rfp.id)))
    return out


@router.get("/drafts", response_model=list[RFPDraftResponse])
def list_drafts(db: Session = Depends(get_db)):
    return db.query(RFP).filter(RFP.status == RFPStatus.DRAFT).order_by(RFP.created_at.desc(), RFP.id.desc()).all()


@router.get("/{rfp_id}", response_model=RFPWithStats)
def get_rfp(rfp_id: int, db: Session = Depends(get_db)):
    rfp = _get_rfp_or_404(db, rfp_id)
    return RFPWithStats(**RFPResponse.model_validate(rfp).model_dump(), response_stats=_stats(db, rfp.id))


@router.get("/{rfp_id}/stats", response_model=RFPStatsResponse)
def get_rfp_stats(rfp_id: int, db: Session = Depends(get_db)):
    """Response statistics plus one row per vendor that has replied."""
    _get_rfp_or_404(db, rfp_id)
    rows = [
        RespondedVendorRow(
            vendor_id=p.vendor_id,
            vendor_name=p.vendor.name,
            received_at=p.received_at,
            price=p.total_price,
        )
        for p in proposal_store.list_for_rfp(db, rfp_id, replied_only=True)
    ]
    return RFPStatsResponse(rfp_id=rfp_id, responded_vendors=rows, **_stats(db, rfp_id).model_dump())


@router.post("/{rfp_id}/draft", response_model=RFPDraftResponse)
def save_draft(rfp_id: int, payload: VendorIdsBody, db: Session = Depends(get_db)):
    """Store the selected vendors on a draft; every id must exist."""
    rfp = _get_rfp_or_404(db, rfp_id)
    if rfp.status != RFPStatus.DRAFT:
        raise HTTPException(status_code=400, detail="Only draft RFPs can be saved as drafts")
    ids = list(dict.fromkeys(payload.vendor_ids))
    vendors = db.query(Vendor).filter(Vendor.id.in_(ids)).all()
    if len(vendors) != len(ids):
        raise HTTPException(status_code=404, detail="Some vendors not found")
    rfp.selected_vendors = vendors
    db.commit()
    db.refresh(rfp)
    return rfp


@router.post("/{rfp_id}/dispatch", response_model=DispatchResponse)
async def dispatch_rfp(rfp_id: int, payload: VendorIdsBody, db: Session = Depends(get_db), mailer=Depends(get_mailer)):
    """
    Email the RFP to each vendor. A successful send registers the vendor in the sent-to set
    and opens a proposal slot for the pair so replies can be correlated. Per-vendor failures
    are reported, not raised. A draft becomes published once at least one send succeeds.
    """
    rfp = _get_rfp_or_404(db, rfp_id)
    vendors = db.query(Vendor).filter(Vendor.id.in_(payload.vendor_ids)).order_by(Vendor.id).all()
    if not vendors:
        raise HTTPException(status_code=404, detail="No vendors found with the provided IDs")

    results: list[DispatchResult] = []
    errors: list[DispatchResult] = []
    for vendor in vendors:
        try:
            message_id = await mailer.send(
                vendor.email, RFP_SUBJECT, render_rfp_email(vendor.name, rfp.structured_data),
                config.FROM_EMAIL, config.FROM_NAME,
            )
            proposal_store.record_dispatch(db, rfp.id, vendor.id)
        except PersistenceError as e:
            logger.error("RFP %s sent to %s but dispatch not recorded: %s", rfp.id, vendor.email, e)
            errors.append(DispatchResult(vendor_id=vendor.id, vendor_name=vendor.name, email=vendor.email,
                                         status="FAILED", error=str(e)))
            continue
        except Exception as e:
            logger.warning("Failed to send RFP %s to %s: %s", rfp.id, vendor.email, e)
            errors.append(DispatchResult(vendor_id=vendor.id, vendor_name=vendor.name, email=vendor.email,
                                         status="FAILED", error=str(e)))
            continue
        results.append(DispatchResult(vendor_id=vendor.id, vendor_name=vendor.name, email=vendor.email,
                                      status="SENT", message_id=message_id))

    db.refresh(rfp)
    if results and rfp.status == RFPStatus.DRAFT:
        rfp.status = RFPStatus.PUBLISHED
        db.commit()
        db.refresh(rfp)
    logger.info("RFP %s dispatch: %s sent, %s failed", rfp.id, len(results), len(errors))
    return DispatchResponse(
        successful=len(results),
        failed=len(errors),
        rfp_status=rfp.status,
        sent_to_vendor_ids=rfp.sent_to_vendor_ids,
        results=results,
        errors=errors,
    )


@router.delete("/{rfp_id}")
def delete_draft(rfp_id: int, db: Session = Depends(get_db)):
    """Only drafts can be deleted; drafts have no proposals yet."""
    rfp = _get_rfp_or_404(db, rfp_id)
    if rfp.status != RFPStatus.DRAFT:
        raise HTTPException(status_code=400, detail="Only draft RFPs can be deleted")
    rfp.selected_vendors = []
    db.delete(rfp)
    db.commit()
    return {"status": "ok", "message": "Draft deleted successfully"}
