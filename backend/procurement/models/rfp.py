from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, Table
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from procurement.models.base import Base


class RFPStatus:
    DRAFT = "draft"
    PUBLISHED = "published"
    CLOSED = "closed"

    ALL = (DRAFT, PUBLISHED, CLOSED)


def _vendor_set_table(name: str) -> Table:
    """Composite primary key makes each table a set of vendor ids per RFP."""
    return Table(
        name,
        Base.metadata,
        Column("rfp_id", Integer, ForeignKey("rfps.id", ondelete="CASCADE"), primary_key=True),
        Column("vendor_id", Integer, ForeignKey("vendors.id", ondelete="CASCADE"), primary_key=True),
        Column("added_at", DateTime(timezone=True), server_default=func.now()),
    )


rfp_sent_vendors = _vendor_set_table("rfp_sent_vendors")
rfp_responded_vendors = _vendor_set_table("rfp_responded_vendors")
rfp_selected_vendors = _vendor_set_table("rfp_selected_vendors")


class RFP(Base):
    __tablename__ = "rfps"

    id = Column(Integer, primary_key=True, index=True)
    original_description = Column(Text, nullable=False)
    # items [{name, specs, quantity}], budget, deadline, paymentTerms, warranty
    structured_data = Column(JSON, nullable=False, default=dict)
    category = Column(String(255), nullable=True)
    status = Column(String(50), default=RFPStatus.DRAFT, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    sent_to_vendors = relationship("Vendor", secondary=rfp_sent_vendors, order_by="Vendor.id")
    responded_vendors = relationship("Vendor", secondary=rfp_responded_vendors, order_by="Vendor.id")
    selected_vendors = relationship("Vendor", secondary=rfp_selected_vendors, order_by="Vendor.id")
    proposals = relationship("Proposal", back_populates="rfp")

    @property
    def sent_to_vendor_ids(self) -> list[int]:
        return [v.id for v in self.sent_to_vendors]

    @property
    def responded_vendor_ids(self) -> list[int]:
        return [v.id for v in self.responded_vendors]

    @property
    def selected_vendor_ids(self) -> list[int]:
        return [v.id for v in self.selected_vendors]
