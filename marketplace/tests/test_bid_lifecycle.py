"""
Tests for submitting, withdrawing, accepting and declining bids.
"""
from concurrent.futures import ThreadPoolExecutor

import pytest

from marketplace.core.errors import (
    ConflictError, InvalidInputError, MarketplaceError, NotAuthorizedError, NotEligibleError,
)
from marketplace.db.models import RFQ, Bid, MarketplaceEvent, BidStatus, RFQStatus
from marketplace.services.engine import MarketplaceEngine
from marketplace.services.matching import MatchingService


def events_of(db, rfq_id, event_type):
    return db.query(MarketplaceEvent).filter(
        MarketplaceEvent.rfq_id == rfq_id,
        MarketplaceEvent.event_type == event_type,
    ).order_by(MarketplaceEvent.id).all()


@pytest.fixture
def market(factory):
    """One open CNC RFQ and three qualified suppliers."""
    customer = factory.customer()
    suppliers = [factory.cnc_supplier() for _ in range(3)]
    rfq = factory.rfq(customer)
    return {
        "customer": customer,
        "customer_id": customer.id,
        "supplier_ids": [s.id for s in suppliers],
        "rfq_id": rfq.id,
    }


class TestSubmitBid:
    """Tests for bid submission."""

    def test_resubmission_updates_the_single_bid(self, db, market):
        engine = MarketplaceEngine(db)
        supplier_id = market["supplier_ids"][0]

        first = engine.submit_bid(market["rfq_id"], supplier_id, 1200.0, currency="usd", lead_time_days=10)
        second = engine.submit_bid(market["rfq_id"], supplier_id, 1100.0, lead_time_days=7, notes="  expedite  ")

        assert second.id == first.id
        assert second.price_total == 1100.0
        assert second.currency == "USD"
        assert second.lead_time_days == 7
        assert second.notes == "expedite"
        assert db.query(Bid).filter(Bid.rfq_id == market["rfq_id"]).count() == 1

        assert len(events_of(db, market["rfq_id"], "bid_submitted")) == 1
        updated = events_of(db, market["rfq_id"], "bid_updated")
        assert len(updated) == 1
        assert updated[0].payload["previous_status"] == "submitted"

    def test_unqualified_supplier_is_refused(self, db, factory, market):
        caster = factory.supplier(capabilities=[{"process": "Sand Casting", "materials": ["Iron"]}])

        with pytest.raises(NotEligibleError) as exc:
            MarketplaceEngine(db).submit_bid(market["rfq_id"], caster.id, 900.0)

        assert exc.value.code == "below_match_threshold"
        assert db.query(Bid).count() == 0

    @pytest.mark.parametrize("status", ["draft", "closed", "cancelled", "awarded", "pending_award"])
    def test_rfq_not_accepting_bids(self, db, factory, market, status):
        rfq = factory.rfq(market["customer"], status=status)

        with pytest.raises(NotEligibleError) as exc:
            MarketplaceEngine(db).submit_bid(rfq.id, market["supplier_ids"][0], 900.0)

        assert exc.value.code == "rfq_not_open"

    @pytest.mark.parametrize("fields", [
        {"price_total": -5.0},
        {"price_total": 0},
        {"price_total": float("nan")},
        {"price_total": 100.0, "currency": "US"},
        {"price_total": 100.0, "currency": "U5D"},
        {"price_total": 100.0, "lead_time_days": -1},
        {"price_total": 100.0, "lead_time_days": 10000},
        {"price_total": 100.0, "notes": "x" * 5000},
    ])
    def test_invalid_input(self, db, market, fields):
        with pytest.raises(InvalidInputError) as exc:
            MarketplaceEngine(db).submit_bid(market["rfq_id"], market["supplier_ids"][0], **fields)
        assert exc.value.code == "invalid_bid"

    def test_concurrent_first_submissions_produce_one_row(self, session_factory, market):
        rfq_id, supplier_id = market["rfq_id"], market["supplier_ids"][0]

        def submit(price):
            session = session_factory()
            try:
                return MarketplaceEngine(session).submit_bid(rfq_id, supplier_id, price)
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=5) as pool:
            results = list(pool.map(submit, [1000.0, 1010.0, 1020.0, 1030.0, 1040.0]))

        assert len(set(bid.id for bid in results)) == 1
        with session_factory() as session:
            rows = session.query(Bid).filter(Bid.rfq_id == rfq_id).all()
            assert len(rows) == 1
            assert rows[0].status == BidStatus.SUBMITTED.value


class TestWithdrawBid:
    """Tests for bid withdrawal."""

    def test_withdraw_and_resubmit(self, db, market):
        engine = MarketplaceEngine(db)
        supplier_id = market["supplier_ids"][0]
        bid = engine.submit_bid(market["rfq_id"], supplier_id, 1000.0)

        withdrawn = engine.withdraw_bid(market["rfq_id"], bid.id, supplier_id)
        assert withdrawn.status == "withdrawn"

        again = engine.withdraw_bid(market["rfq_id"], bid.id, supplier_id)
        assert again.status == "withdrawn"
        assert len(events_of(db, market["rfq_id"], "bid_withdrawn")) == 1

        resubmitted = engine.submit_bid(market["rfq_id"], supplier_id, 980.0)
        assert resubmitted.id == bid.id
        assert resubmitted.status == "submitted"

    def test_only_the_bidder_can_withdraw(self, db, market):
        engine = MarketplaceEngine(db)
        bid = engine.submit_bid(market["rfq_id"], market["supplier_ids"][0], 1000.0)

        with pytest.raises(NotAuthorizedError):
            engine.withdraw_bid(market["rfq_id"], bid.id, market["supplier_ids"][1])


class TestAward:
    """Tests for accepting and declining bids."""

    @pytest.fixture
    def bids(self, db, market):
        engine = MarketplaceEngine(db)
        rfq_id = market["rfq_id"]
        a, b, c = market["supplier_ids"]
        bid_a = engine.submit_bid(rfq_id, a, 1000.0, lead_time_days=10)
        bid_b = engine.submit_bid(rfq_id, b, 1100.0, lead_time_days=7)
        bid_c = engine.submit_bid(rfq_id, c, 900.0, lead_time_days=20)
        engine.withdraw_bid(rfq_id, bid_c.id, c)
        return bid_a, bid_b, bid_c

    def test_accept_awards_rfq_and_rejects_siblings(self, db, market, bids):
        bid_a, bid_b, bid_c = bids

        accepted = MarketplaceEngine(db).accept_bid(market["rfq_id"], bid_a.id, market["customer_id"])

        assert accepted.status == "accepted"
        rfq = db.get(RFQ, market["rfq_id"])
        assert rfq.status == RFQStatus.AWARDED.value
        assert rfq.awarded_bid_id == bid_a.id
        assert db.get(Bid, bid_b.id).status == "rejected"
        assert db.get(Bid, bid_c.id).status == "withdrawn"

        awarded = events_of(db, market["rfq_id"], "rfq_awarded")
        assert len(awarded) == 1
        assert awarded[0].payload["bid_id"] == bid_a.id
        assert awarded[0].payload["rejected_bid_ids"] == [bid_b.id]

    def test_reaccepting_winner_is_idempotent(self, db, market, bids):
        engine = MarketplaceEngine(db)
        bid_a = bids[0]
        engine.accept_bid(market["rfq_id"], bid_a.id, market["customer_id"])

        again = engine.accept_bid(market["rfq_id"], bid_a.id, market["customer_id"])

        assert again.status == "accepted"
        assert len(events_of(db, market["rfq_id"], "rfq_awarded")) == 1

    def test_second_award_is_a_conflict(self, db, market, bids):
        engine = MarketplaceEngine(db)
        engine.accept_bid(market["rfq_id"], bids[0].id, market["customer_id"])

        with pytest.raises(ConflictError) as exc:
            engine.accept_bid(market["rfq_id"], bids[1].id, market["customer_id"])
        assert exc.value.code == "already_awarded"

    def test_only_owner_can_accept(self, db, factory, market, bids):
        stranger = factory.customer()
        with pytest.raises(NotAuthorizedError):
            MarketplaceEngine(db).accept_bid(market["rfq_id"], bids[0].id, stranger.id)

    def test_withdrawn_bid_cannot_be_accepted(self, db, market, bids):
        with pytest.raises(NotEligibleError) as exc:
            MarketplaceEngine(db).accept_bid(market["rfq_id"], bids[2].id, market["customer_id"])
        assert exc.value.code == "bid_not_submitted"

    def test_accepted_bid_is_locked(self, db, market, bids):
        engine = MarketplaceEngine(db)
        bid_a = bids[0]
        supplier_a = market["supplier_ids"][0]
        engine.accept_bid(market["rfq_id"], bid_a.id, market["customer_id"])

        with pytest.raises(ConflictError) as exc:
            engine.withdraw_bid(market["rfq_id"], bid_a.id, supplier_a)
        assert exc.value.code == "bid_accepted"

        with pytest.raises(NotEligibleError) as exc:
            engine.submit_bid(market["rfq_id"], supplier_a, 10.0)
        assert exc.value.code == "rfq_not_open"

    def test_decline_restores_rejected_bids(self, db, market, bids):
        engine = MarketplaceEngine(db)
        bid_a, bid_b, bid_c = bids
        engine.accept_bid(market["rfq_id"], bid_a.id, market["customer_id"])

        rfq = engine.decline_award(market["rfq_id"], market["customer_id"])

        assert rfq.status == "in_review"
        assert rfq.awarded_bid_id is None
        assert db.get(Bid, bid_a.id).status == "rejected"
        assert db.get(Bid, bid_b.id).status == "submitted"
        assert db.get(Bid, bid_c.id).status == "withdrawn"

        declined = events_of(db, market["rfq_id"], "rfq_award_declined")
        assert declined[0].payload == {"bid_id": bid_a.id, "restored_bid_ids": [bid_b.id]}

        reawarded = engine.accept_bid(market["rfq_id"], bid_b.id, market["customer_id"])
        assert reawarded.status == "accepted"

    def test_decline_without_award(self, db, market, bids):
        with pytest.raises(NotEligibleError) as exc:
            MarketplaceEngine(db).decline_award(market["rfq_id"], market["customer_id"])
        assert exc.value.code == "not_awarded"

    def test_errors_share_a_base_class(self, db, market, bids):
        with pytest.raises(MarketplaceError):
            MarketplaceEngine(db).decline_award(market["rfq_id"], market["customer_id"])


class TestSubmitAwardRace:
    """Submissions interleaved with an award never leave a live bid on an awarded RFQ."""

    def test_award_after_open_check_refuses_the_write(self, db, session_factory, market, monkeypatch):
        rfq_id, supplier_id = market["rfq_id"], market["supplier_ids"][0]
        original = MatchingService.evaluate

        def award_meanwhile(service, rfq, supplier_id, context=None):
            score = original(service, rfq, supplier_id, context)
            with session_factory() as other:
                other.query(RFQ).filter(RFQ.id == rfq_id).update(
                    {RFQ.status: RFQStatus.AWARDED.value}, synchronize_session=False
                )
                other.commit()
            return score

        monkeypatch.setattr(MatchingService, "evaluate", award_meanwhile)

        with pytest.raises(NotEligibleError) as exc:
            MarketplaceEngine(db).submit_bid(rfq_id, supplier_id, 1000.0)

        assert exc.value.code == "rfq_not_open"
        assert db.query(Bid).filter(Bid.rfq_id == rfq_id).count() == 0
        assert events_of(db, rfq_id, "bid_submitted") == []

    def test_concurrent_submissions_and_award(self, db, session_factory, factory, market):
        rfq_id = market["rfq_id"]
        winner = MarketplaceEngine(db).submit_bid(rfq_id, market["supplier_ids"][0], 1000.0)
        latecomers = [factory.cnc_supplier().id for _ in range(6)]

        def accept():
            with session_factory() as session:
                return MarketplaceEngine(session).accept_bid(rfq_id, winner.id, market["customer_id"])

        def submit(supplier_id):
            with session_factory() as session:
                try:
                    return MarketplaceEngine(session).submit_bid(rfq_id, supplier_id, 950.0)
                except NotEligibleError as e:
                    assert e.code == "rfq_not_open"
                    return None

        with ThreadPoolExecutor(max_workers=7) as pool:
            submissions = [pool.submit(submit, supplier_id) for supplier_id in latecomers]
            award = pool.submit(accept)
            for future in submissions:
                future.result()
            assert award.result().status == BidStatus.ACCEPTED.value

        with session_factory() as session:
            rfq = session.get(RFQ, rfq_id)
            statuses = [b.status for b in session.query(Bid).filter(Bid.rfq_id == rfq_id)]
            assert rfq.status == RFQStatus.AWARDED.value
            assert rfq.awarded_bid_id == winner.id
            assert BidStatus.SUBMITTED.value not in statuses
            assert statuses.count(BidStatus.ACCEPTED.value) == 1
