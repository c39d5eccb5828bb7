from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship, validates
from sqlalchemy.sql import func

from procurement.models.base import Base


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)  # stored lower-cased
    category = Column(String(255), nullable=False, index=True)
    contact_person = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    proposals = relationship("Proposal", back_populates="vendor")

    @validates("email")
    def _normalize_email(self, key, value):
        return (value or "").strip().lower()
