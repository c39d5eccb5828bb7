"""Sender/RFP correlation for inbound vendor replies."""

from datetime import datetime, timezone

import pytest

from procurement.errors import CorrelationFailure
from procurement.models.proposal import Proposal
from procurement.models.rfp import RFP, RFPStatus
from procurement.services import proposal_store
from procurement.services.correlator import Correlator, extract_address, subject_matches


class TestExtractAddress:

    @pytest.mark.parametrize("header,expected", [
        ("John <j@x.com>", "j@x.com"),
        ("j@x.com", "j@x.com"),
        ("  j@x.com ", "j@x.com"),
        ('"Doe, John" <j@x.com>', "j@x.com"),
        ("", ""),
        (None, ""),
    ])
    def test_extract_address(self, header, expected):
        assert extract_address(header) == expected


class TestSubjectFilter:

    @pytest.mark.parametrize("subject", ["RE: Request for Proposal", "re: laptops", "Our rfp answer", "Proposal attached"])
    def test_matching_subjects(self, subject):
        assert subject_matches(subject)

    @pytest.mark.parametrize("subject", ["Quote for laptops", "", None])
    def test_non_matching_subjects(self, subject):
        assert not subject_matches(subject)


class TestCorrelator:

    def test_resolves_vendor_and_rfp(self, db, dispatched, vendor):
        match = Correlator().correlate(db, "Acme <a@x.com>", "RE: RFP")
        assert match.vendor.id == vendor.id
        assert match.rfp.id == dispatched.id

    def test_unregistered_sender_fails(self, db, dispatched):
        with pytest.raises(CorrelationFailure):
            Correlator().correlate(db, "Stranger <nobody@z.com>", "RE: RFP")

    def test_vendor_without_dispatch_fails(self, db, vendor):
        with pytest.raises(CorrelationFailure):
            Correlator().correlate(db, "a@x.com", "RE: RFP")

    def test_subject_filter_only_when_required(self, db, dispatched):
        correlator = Correlator()
        assert correlator.correlate(db, "a@x.com", "Quote").rfp.id == dispatched.id
        with pytest.raises(CorrelationFailure):
            correlator.correlate(db, "a@x.com", "Quote", require_subject=True)

    def test_most_recent_proposal_wins(self, db, vendor, dispatched):
        newer = RFP(original_description="Office chairs", structured_data={}, status=RFPStatus.PUBLISHED)
        db.add(newer)
        db.commit()
        proposal_store.record_dispatch(db, newer.id, vendor.id)

        match = Correlator().correlate(db, "Acme <a@x.com>", "RE: RFP")
        assert match.rfp.id == newer.id

    def test_latest_created_beats_higher_id(self, db, vendor, dispatched):
        later = RFP(original_description="Monitors", structured_data={}, status=RFPStatus.PUBLISHED)
        db.add(later)
        db.commit()
        proposal_store.record_dispatch(db, later.id, vendor.id)

        first = db.query(Proposal).filter(Proposal.rfp_id == dispatched.id).one()
        second = db.query(Proposal).filter(Proposal.rfp_id == later.id).one()
        assert first.id < second.id
        first.created_at = datetime(2031, 1, 1, tzinfo=timezone.utc)
        second.created_at = datetime(2030, 1, 1, tzinfo=timezone.utc)
        db.commit()

        match = Correlator().correlate(db, "a@x.com", "RE: RFP")
        assert match.rfp.id == dispatched.id

    def test_custom_strategy(self, db, vendor, dispatched):
        class FirstRFP:
            def resolve(self, db, vendor):
                return db.query(RFP).order_by(RFP.id).first()

        newer = RFP(original_description="Desks", structured_data={}, status=RFPStatus.PUBLISHED)
        db.add(newer)
        db.commit()
        proposal_store.record_dispatch(db, newer.id, vendor.id)

        assert Correlator(FirstRFP()).correlate(db, "a@x.com").rfp.id == dispatched.id
