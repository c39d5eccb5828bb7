from datetime import datetime
from typing import Optional, List, Any, Dict
from pydantic import BaseModel, Field

from procurement.schemas.rfp import RFPResponse
from procurement.schemas.vendor import VendorRef


class InboundEmail(BaseModel):
    """Webhook payload from the inbound-mail provider."""
    sender: str = Field("", alias="from")
    to: Optional[str] = None
    subject: Optional[str] = None
    html: Optional[str] = None
    text: Optional[str] = None

    class Config:
        populate_by_name = True

    @property
    def body(self) -> str:
        return self.html or self.text or ""


class ManualProposalBody(BaseModel):
    rfp_id: int = Field(..., alias="rfpId")
    vendor_id: int = Field(..., alias="vendorId")
    email_body: str = Field(..., alias="emailBody", min_length=1)

    class Config:
        populate_by_name = True


class RFPStatusUpdate(BaseModel):
    status: str


class ProposalResponse(BaseModel):
    id: int
    rfp_id: int
    vendor: VendorRef
    automated_reply: Optional[str] = None
    manual_reply: Optional[str] = None
    last_reply_kind: Optional[str] = None
    extracted_data: Dict[str, Any] = {}
    ai_score: Optional[float] = None
    compliance_fulfilled: Optional[bool] = None
    compliance_reasons: List[str] = []
    compliance_summary: str = ""
    dispatched_at: Optional[datetime] = None
    received_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WebhookAck(BaseModel):
    """Always returned with HTTP 200."""
    message: str
    proposal_id: Optional[int] = None


class RFPStatusResponse(BaseModel):
    rfp: RFPResponse
    proposals: List[ProposalResponse]
    proposals_count: int
