"""Proposal upsert, vendor sets and response statistics."""

from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from procurement.errors import PersistenceError
from procurement.models.proposal import Proposal, ReplyKind
from procurement.services import proposal_store
from procurement.services.extraction import ExtractedProposal
from procurement.services.proposal_store import ReplySource, response_rate


def _fields(price=5000.0):
    return ExtractedProposal(total_price=price, delivery_date=date(2030, 5, 1), warranty_provided="2 years", notes=None)


class TestResponseRate:

    @pytest.mark.parametrize("responded,contacted,expected", [
        (0, 0, 0),
        (3, 0, 0),
        (1, 3, 33),
        (2, 3, 67),
        (1, 2, 50),
        (1, 8, 13),
        (3, 3, 100),
    ])
    def test_rounding(self, responded, contacted, expected):
        assert response_rate(responded, contacted) == expected


class TestRecordDispatch:

    def test_adds_sent_vendor_and_placeholder(self, db, rfp, vendor):
        proposal = proposal_store.record_dispatch(db, rfp.id, vendor.id)
        db.refresh(rfp)
        assert rfp.sent_to_vendor_ids == [vendor.id]
        assert proposal.dispatched_at is not None
        assert not proposal.has_reply
        assert proposal.compliance_fulfilled is None

    def test_redispatch_keeps_single_row(self, db, rfp, vendor):
        proposal_store.record_dispatch(db, rfp.id, vendor.id)
        proposal_store.record_dispatch(db, rfp.id, vendor.id)
        db.refresh(rfp)
        assert rfp.sent_to_vendor_ids == [vendor.id]
        assert db.query(Proposal).count() == 1


class TestUpsert:

    def test_repeated_replies_keep_one_proposal(self, db, dispatched, vendor):
        proposal_store.upsert(db, dispatched.id, vendor.id, ReplySource.automated("first"), _fields(5000))
        second = proposal_store.upsert(db, dispatched.id, vendor.id, ReplySource.automated("second"), _fields(4500))

        rows = db.query(Proposal).filter(Proposal.rfp_id == dispatched.id, Proposal.vendor_id == vendor.id).all()
        assert len(rows) == 1
        assert second.automated_reply == "second"
        assert second.total_price == 4500

        db.refresh(dispatched)
        assert dispatched.responded_vendor_ids == [vendor.id]

    def test_responded_set_has_no_duplicates(self, db, dispatched, vendor):
        assert proposal_store.mark_responded(db, dispatched.id, vendor.id) is True
        assert proposal_store.mark_responded(db, dispatched.id, vendor.id) is False
        stats = proposal_store.response_stats(db, dispatched.id)
        assert stats.total_responses == 1

    def test_manual_and_automated_fields_coexist(self, db, dispatched, vendor):
        proposal_store.upsert(db, dispatched.id, vendor.id, ReplySource.automated("from mailbox"), _fields())
        proposal = proposal_store.upsert(db, dispatched.id, vendor.id, ReplySource.manual("pasted"), _fields(4800))
        assert proposal.automated_reply == "from mailbox"
        assert proposal.manual_reply == "pasted"
        assert proposal.last_reply_kind == ReplyKind.MANUAL
        assert proposal.total_price == 4800

    def test_upsert_keeps_compliance_verdict(self, db, dispatched, vendor):
        proposal = proposal_store.upsert(db, dispatched.id, vendor.id, ReplySource.automated("v1"), _fields())
        proposal.compliance_fulfilled = True
        proposal.compliance_reasons = ["Price is within budget"]
        db.commit()

        proposal = proposal_store.upsert(db, dispatched.id, vendor.id, ReplySource.automated("v2"), _fields(90000))
        assert proposal.compliance_fulfilled is True
        assert proposal.compliance_reasons == ["Price is within budget"]

    def test_extracted_data_shape(self, db, dispatched, vendor):
        proposal = proposal_store.upsert(db, dispatched.id, vendor.id, ReplySource.automated("body"), _fields())
        assert proposal.extracted_data == {
            "totalPrice": 5000.0,
            "deliveryDate": "2030-05-01",
            "warrantyProvided": "2 years",
            "notes": None,
        }

    def test_upsert_without_dispatch_creates_row(self, db, rfp, vendor):
        proposal = proposal_store.upsert(db, rfp.id, vendor.id, ReplySource.automated("unsolicited"), _fields())
        assert proposal.id is not None
        stats = proposal_store.response_stats(db, rfp.id)
        assert stats.total_responses == 1
        assert stats.total_vendors_contacted == 0
        assert stats.response_rate == 0

    def test_content_write_failure_raises_persistence_error(self, db, dispatched, vendor, monkeypatch):
        def broken_commit():
            raise OperationalError("UPDATE proposals", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db, "commit", broken_commit)
        with pytest.raises(PersistenceError):
            proposal_store.upsert(db, dispatched.id, vendor.id, ReplySource.automated("body"), _fields())

    def test_responded_set_failure_keeps_proposal(self, db, dispatched, vendor, monkeypatch):
        def broken_mark(db, rfp_id, vendor_id):
            raise PersistenceError("set update failed")

        monkeypatch.setattr(proposal_store, "mark_responded", broken_mark)
        proposal = proposal_store.upsert(db, dispatched.id, vendor.id, ReplySource.automated("body"), _fields())
        assert proposal.has_reply
        assert proposal_store.response_stats(db, dispatched.id).total_responses == 0

        monkeypatch.undo()
        proposal_store.upsert(db, dispatched.id, vendor.id, ReplySource.automated("again"), _fields())
        assert proposal_store.response_stats(db, dispatched.id).total_responses == 1


class TestResponseStats:

    def test_counts_and_pending(self, db, dispatched, vendor, other_vendor):
        proposal_store.record_dispatch(db, dispatched.id, other_vendor.id)
        proposal_store.upsert(db, dispatched.id, vendor.id, ReplySource.automated("body"), _fields())

        stats = proposal_store.response_stats(db, dispatched.id)
        assert stats.as_dict() == {
            "totalResponses": 1,
            "totalVendorsContacted": 2,
            "pendingResponses": 1,
            "responseRate": 50,
        }

    def test_list_for_rfp_replied_only(self, db, dispatched, vendor, other_vendor):
        proposal_store.record_dispatch(db, dispatched.id, other_vendor.id)
        proposal_store.upsert(db, dispatched.id, vendor.id, ReplySource.automated("body"), _fields())

        assert len(proposal_store.list_for_rfp(db, dispatched.id)) == 2
        replied = proposal_store.list_for_rfp(db, dispatched.id, replied_only=True)
        assert [p.vendor_id for p in replied] == [vendor.id]
