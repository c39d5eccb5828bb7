from datetime import datetime
from typing import Optional, List, Any, Dict
from pydantic import BaseModel, Field

from procurement.schemas.vendor import VendorResponse


class RFPParseRequest(BaseModel):
    description: str


class VendorIdsBody(BaseModel):
    vendor_ids: List[int] = Field(..., alias="vendorIds", min_length=1)

    class Config:
        populate_by_name = True


class ResponseStats(BaseModel):
    total_responses: int = Field(alias="totalResponses")
    total_vendors_contacted: int = Field(alias="totalVendorsContacted")
    pending_responses: int = Field(alias="pendingResponses")
    response_rate: int = Field(alias="responseRate")

    class Config:
        populate_by_name = True


class RFPResponse(BaseModel):
    id: int
    original_description: str
    structured_data: Dict[str, Any] = {}
    category: Optional[str] = None
    status: str
    sent_to_vendor_ids: List[int] = []
    responded_vendor_ids: List[int] = []
    selected_vendor_ids: List[int] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RFPWithStats(RFPResponse):
    response_stats: ResponseStats


class RFPDraftResponse(RFPResponse):
    selected_vendors: List[VendorResponse] = []


class RFPParseResponse(BaseModel):
    rfp: RFPResponse
    vendors: List[VendorResponse]
    vendors_count: int


class DispatchResult(BaseModel):
    vendor_id: int
    vendor_name: str
    email: str
    status: str  # "SENT" | "FAILED"
    message_id: Optional[str] = None
    error: Optional[str] = None


class DispatchResponse(BaseModel):
    successful: int
    failed: int
    rfp_status: str
    sent_to_vendor_ids: List[int]
    results: List[DispatchResult]
    errors: List[DispatchResult]


class RespondedVendorRow(BaseModel):
    vendor_id: int
    vendor_name: str
    received_at: Optional[datetime] = None
    price: Optional[float] = None


class RFPStatsResponse(ResponseStats):
    rfp_id: int
    responded_vendors: List[RespondedVendorRow] = []
