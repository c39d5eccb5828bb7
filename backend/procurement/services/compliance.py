"""
Compliance Evaluator: proposal extracted data vs. RFP structured requirements.

Verdicts are computed lazily on read and cached on the proposal. A cached verdict is
only recomputed after invalidate() clears it; new replies do not clear it.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from procurement.errors import EvaluationError
from procurement.models.proposal import Proposal
from procurement.models.rfp import RFP
from procurement.services.ai_service import Oracle

logger = logging.getLogger(__name__)

COMPLIANCE_SYSTEM_PROMPT = (
    "You are a professional procurement analyst. Compare the vendor's proposal against the RFP "
    "requirements and determine if the vendor fulfills all requirements. Analyze: "
    "1. Price: does the proposal price fit within the budget? "
    "2. Delivery date: does the proposed delivery meet the deadline? "
    "3. Warranty: does the warranty offered meet or exceed requirements? "
    "4. Overall compliance: are all conditions satisfied? "
    'Return ONLY a JSON object with "fulfilled" (boolean, true only if ALL requirements are met), '
    '"reasons" (array of strings, specific issues or confirmations such as "Price exceeds budget by $500"), '
    '"summary" (string, 1-2 sentence overall assessment). '
    "Be strict: if ANY requirement is not met, set fulfilled to false."
)


@dataclass
class ComplianceVerdict:
    fulfilled: bool
    reasons: list[str] = field(default_factory=list)
    summary: str = ""


def _coerce_verdict(raw: Any) -> ComplianceVerdict:
    if not isinstance(raw, dict) or not isinstance(raw.get("fulfilled"), bool):
        raise EvaluationError("Verdict must be an object with a boolean 'fulfilled'")
    reasons = raw.get("reasons") or []
    if not isinstance(reasons, list):
        reasons = [reasons]
    return ComplianceVerdict(
        fulfilled=raw["fulfilled"],
        reasons=[str(r) for r in reasons if str(r).strip()],
        summary=str(raw.get("summary") or ""),
    )


def _as_date(value: Any) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _mock_evaluate(requirements: dict[str, Any], proposal: dict[str, Any]) -> dict[str, Any]:
    """Rule-based comparison used when no oracle is configured."""
    reasons = []
    ok = True
    budget = requirements.get("budget")
    price = proposal.get("totalPrice")
    if budget is not None:
        if price is None:
            ok = False
            reasons.append("No total price quoted")
        elif price > budget:
            ok = False
            reasons.append(f"Price exceeds budget by ${price - budget:,.2f}")
        else:
            reasons.append("Price is within budget")
    deadline = _as_date(requirements.get("deadline"))
    delivery = _as_date(proposal.get("deliveryDate"))
    if deadline is not None:
        if delivery is None:
            ok = False
            reasons.append("No delivery date provided")
        elif delivery > deadline:
            ok = False
            reasons.append(f"Delivery date {delivery.isoformat()} is after the deadline {deadline.isoformat()}")
        else:
            reasons.append("Delivery date meets deadline")
    if requirements.get("warranty"):
        if proposal.get("warrantyProvided"):
            reasons.append(f"Warranty offered: {proposal['warrantyProvided']}")
        else:
            ok = False
            reasons.append("No warranty provided but required")
    summary = "Proposal meets all stated requirements." if ok else "Proposal does not meet all requirements."
    return {"fulfilled": ok, "reasons": reasons, "summary": summary}


async def evaluate(requirements: dict[str, Any], proposal_data: dict[str, Any], oracle: Oracle | None) -> ComplianceVerdict:
    """Raise EvaluationError on oracle failure or malformed verdict."""
    if oracle is None:
        return _coerce_verdict(_mock_evaluate(requirements or {}, proposal_data))
    user = (
        f"RFP Requirements:\n{json.dumps(requirements or {}, indent=2, default=str)}\n\n"
        f"Vendor Proposal:\n{json.dumps(proposal_data, indent=2, default=str)}\n\n"
        "Compare and analyze compliance."
    )
    try:
        raw = await oracle.complete_json(COMPLIANCE_SYSTEM_PROMPT, user)
    except Exception as e:
        raise EvaluationError(f"Compliance oracle failed: {e}") from e
    return _coerce_verdict(raw)


def needs_evaluation(proposal: Proposal) -> bool:
    return proposal.has_reply and proposal.compliance_fulfilled is None


def apply_verdict(proposal: Proposal, verdict: ComplianceVerdict) -> None:
    proposal.compliance_fulfilled = verdict.fulfilled
    proposal.compliance_reasons = list(verdict.reasons)
    proposal.compliance_summary = verdict.summary


def invalidate(db: Session, proposal: Proposal) -> None:
    """Return the proposal to the unevaluated state so the next read re-evaluates it."""
    proposal.compliance_fulfilled = None
    proposal.compliance_reasons = []
    proposal.compliance_summary = ""
    db.commit()
    logger.info("Compliance verdict cleared for proposal_id=%s", proposal.id)


async def ensure_evaluated(db: Session, rfp: RFP, proposals: list[Proposal], oracle: Oracle | None) -> list[Proposal]:
    """
    Evaluate every replied, unevaluated proposal concurrently. A failure leaves that
    proposal without a verdict (retried on the next read) and does not affect siblings.
    """
    pending = [p for p in proposals if needs_evaluation(p)]
    if not pending:
        return proposals
    requirements = rfp.structured_data or {}
    results = await asyncio.gather(
        *(evaluate(requirements, p.extracted_data, oracle) for p in pending),
        return_exceptions=True,
    )
    for proposal, result in zip(pending, results):
        if isinstance(result, BaseException):
            logger.warning("Compliance evaluation failed for proposal_id=%s: %s", proposal.id, result)
            continue
        apply_verdict(proposal, result)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.warning("Could not persist compliance verdicts for rfp_id=%s", rfp.id, exc_info=True)
    return proposals
