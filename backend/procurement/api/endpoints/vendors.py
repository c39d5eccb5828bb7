import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from procurement.database import get_db
from procurement.models.vendor import Vendor
from procurement.schemas.vendor import VendorCreate, VendorResponse

router = APIRouter(prefix="/vendors", tags=["vendors"])
logger = logging.getLogger(__name__)


@router.post("", response_model=VendorResponse, status_code=201)
def create_vendor(payload: VendorCreate, db: Session = Depends(get_db)):
    """Register a vendor. Email is unique, compared case-insensitively."""
    if db.query(Vendor).filter(Vendor.email == payload.email.lower()).first():
        raise HTTPException(status_code=409, detail="Vendor with this email already exists")
    vendor = Vendor(
        name=payload.name,
        email=payload.email,
        category=payload.category,
        contact_person=(payload.contact_person or "").strip() or None,
    )
    db.add(vendor)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Vendor with this email already exists") from None
    db.refresh(vendor)
    logger.info("Vendor created: %s <%s>", vendor.name, vendor.email)
    return vendor


@router.get("", response_model=list[VendorResponse])
def list_vendors(db: Session = Depends(get_db)):
    return db.query(Vendor).order_by(Vendor.created_at.desc(), Vendor.id.desc()).all()
