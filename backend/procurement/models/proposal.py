from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Float, Boolean, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from procurement.models.base import Base


class ReplyKind:
    AUTOMATED = "automated"  # webhook or mailbox push
    MANUAL = "manual"        # pasted in by a buyer


class Proposal(Base):
    """At most one current proposal per (RFP, vendor) pair; later replies overwrite it."""
    __tablename__ = "proposals"
    __table_args__ = (UniqueConstraint("rfp_id", "vendor_id", name="uq_proposal_rfp_vendor"),)

    id = Column(Integer, primary_key=True, index=True)
    rfp_id = Column(Integer, ForeignKey("rfps.id"), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)

    automated_reply = Column(Text, nullable=True)
    manual_reply = Column(Text, nullable=True)
    last_reply_kind = Column(String(20), nullable=True)  # None until the vendor has replied

    total_price = Column(Float, nullable=True)
    delivery_date = Column(DateTime(timezone=True), nullable=True)
    warranty_provided = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    ai_score = Column(Float, nullable=True)

    # Tri-state: None = not evaluated yet
    compliance_fulfilled = Column(Boolean, nullable=True)
    compliance_reasons = Column(JSON, nullable=False, default=list)
    compliance_summary = Column(Text, nullable=False, default="")

    dispatched_at = Column(DateTime(timezone=True), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    rfp = relationship("RFP", back_populates="proposals")
    vendor = relationship("Vendor", back_populates="proposals")

    @property
    def has_reply(self) -> bool:
        return self.last_reply_kind is not None

    @property
    def extracted_data(self) -> dict:
        return {
            "totalPrice": self.total_price,
            "deliveryDate": self.delivery_date.date().isoformat() if self.delivery_date else None,
            "warrantyProvided": self.warranty_provided,
            "notes": self.notes,
        }
