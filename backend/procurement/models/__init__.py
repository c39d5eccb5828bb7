from procurement.models.rfp import RFP, RFPStatus
from procurement.models.vendor import Vendor
from procurement.models.proposal import Proposal, ReplyKind
from procurement.models.mailbox import MailboxCursor

__all__ = ["RFP", "RFPStatus", "Vendor", "Proposal", "ReplyKind", "MailboxCursor"]
