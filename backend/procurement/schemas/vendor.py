from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class VendorCreate(BaseModel):
    name: str
    email: str
    category: str
    contact_person: Optional[str] = Field(None, alias="contactPerson")

    class Config:
        populate_by_name = True

    @field_validator("name", "category")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("email")
    @classmethod
    def valid_email(cls, v: str) -> str:
        v = (v or "").strip().lower()
        local, _, domain = v.partition("@")
        if not local or "." not in domain or any(c.isspace() for c in v):
            raise ValueError("Please provide a valid email address")
        return v


class VendorResponse(BaseModel):
    id: int
    name: str
    email: str
    category: str
    contact_person: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VendorRef(BaseModel):
    id: int
    name: str
    email: str
    category: str

    class Config:
        from_attributes = True
