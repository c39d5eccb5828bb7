from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func

from procurement.models.base import Base


class MailboxCursor(Base):
    """Persisted push cursor and watch state for one watched mailbox."""
    __tablename__ = "mailbox_cursors"

    id = Column(Integer, primary_key=True, index=True)
    mailbox = Column(String(255), nullable=False, unique=True)
    last_history_id = Column(String(64), nullable=True)
    watch_expiration = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
