"""
Tests for customer priority, supplier leverage and bid comparison.
"""
from datetime import datetime, timedelta, timezone

import pytest

from marketplace.core.errors import NotAuthorizedError
from marketplace.db.models import MarketplaceEvent, BidStatus
from marketplace.services.engine import MarketplaceEngine
from marketplace.services.strategy import (
    date_urgency, leverage_posture, normalize_priority, priority_tier,
)

NOW = datetime(2026, 5, 4, 8, 0, tzinfo=timezone.utc)


class TestStrategyHelpers:
    """Tests for the pure strategy helpers."""

    @pytest.mark.parametrize("value, expected", [(None, 0.3), (0.7, 0.7), (80, 0.8), (1, 1.0), (250, 1.0), (-3, 0.0)])
    def test_normalize_priority(self, value, expected):
        assert normalize_priority(value) == pytest.approx(expected)

    @pytest.mark.parametrize("days, expected", [(-1, 1.0), (3, 0.85), (10, 0.6), (20, 0.4), (60, 0.2)])
    def test_date_urgency(self, days, expected):
        assert date_urgency(NOW + timedelta(days=days), NOW) == expected

    def test_date_urgency_without_target(self):
        assert date_urgency(None, NOW) == 0.3

    @pytest.mark.parametrize("score, tier", [(0.9, "critical"), (0.7, "expedited"), (0.4, "standard"), (0.1, "deferred")])
    def test_priority_tier(self, score, tier):
        assert priority_tier(score) == tier

    @pytest.mark.parametrize("score, posture", [(0.8, "price_setter"), (0.5, "balanced"), (0.3, "price_taker")])
    def test_leverage_posture(self, score, posture):
        assert leverage_posture(score) == posture


class TestCustomerPriority:
    """Tests for customer_priority against stored history."""

    def test_first_time_customer(self, db, factory):
        rfq = factory.rfq(factory.customer(), priority=80)

        profile = MarketplaceEngine(db).customer_priority(rfq.id)

        assert profile.drivers.declared_priority == 0.8
        assert profile.drivers.urgency == 0.3
        assert profile.drivers.loyalty == 0.1
        assert profile.drivers.award_momentum == 0.0
        assert profile.score == pytest.approx(0.395)
        assert profile.tier == "standard"

    def test_loyal_high_value_customer(self, db, factory):
        customer = factory.customer()
        supplier = factory.cnc_supplier()
        for i in range(9):
            past = factory.rfq(customer, status="awarded" if i < 5 else "closed")
            if i < 5:
                bid = factory.bid(past, supplier, price=10000.0, status=BidStatus.ACCEPTED.value)
                past.awarded_bid_id = bid.id
                db.commit()
        rfq = factory.rfq(customer, priority=100, target_date=datetime.now(timezone.utc) + timedelta(days=3))

        profile = MarketplaceEngine(db).customer_priority(rfq.id)

        assert profile.drivers.loyalty == 1.0
        assert profile.drivers.value_density == 1.0
        assert profile.drivers.award_momentum == 0.5
        assert profile.drivers.urgency == 0.85
        assert profile.tier == "critical"


class TestSupplierLeverage:
    """Tests for supplier_leverage."""

    def test_bidding_reduces_leverage(self, db, factory):
        customer = factory.customer()
        suppliers = [factory.cnc_supplier() for _ in range(4)]
        rfq = factory.rfq(customer)
        supplier_id = suppliers[0].id

        before = MarketplaceEngine(db).supplier_leverage(rfq.id, supplier_id)
        assert before.reasoning.market_coverage_gap == 1.0
        assert before.reasoning.has_active_bid is False
        assert before.leverage_score == pytest.approx(0.55)
        assert before.posture == "balanced"

        MarketplaceEngine(db).submit_bid(rfq.id, supplier_id, 1000.0)

        after = MarketplaceEngine(db).supplier_leverage(rfq.id, supplier_id)
        assert after.reasoning.has_active_bid is True
        assert after.reasoning.market_coverage_gap == 0.75
        assert after.leverage_score == pytest.approx(0.325)
        assert after.posture == "price_taker"

        events = db.query(MarketplaceEvent).filter(
            MarketplaceEvent.event_type == "supplier_advantage_shifted"
        ).all()
        assert len(events) == 2
        assert events[-1].payload["posture"] == "price_taker"


class TestCompareBids:
    """Tests for compare_bids."""

    def test_scorecards_rank_live_bids(self, db, factory):
        customer = factory.customer()
        a, b, c = factory.cnc_supplier(name="Alpha CNC"), factory.cnc_supplier(), factory.cnc_supplier()
        rfq = factory.rfq(customer)
        bid_a = factory.bid(rfq, a, price=1000.0, lead_time_days=10)
        bid_b = factory.bid(rfq, b, price=800.0, lead_time_days=20)
        factory.bid(rfq, c, price=500.0, lead_time_days=5, status=BidStatus.WITHDRAWN.value)

        comparison = MarketplaceEngine(db).compare_bids(rfq.id, customer.id)

        cards = comparison.scorecards
        assert [card.bid.id for card in cards] == [bid_a.id, bid_b.id]
        assert cards[0].recommended is True
        assert cards[1].recommended is False
        assert cards[0].supplier_name == "Alpha CNC"
        assert (cards[0].price_score, cards[0].lead_time_score) == (80.0, 100.0)
        assert (cards[1].price_score, cards[1].lead_time_score) == (100.0, 50.0)
        assert cards[0].overall_score == 83.5

    def test_missing_lead_time_scores_neutral(self, db, factory):
        customer = factory.customer()
        rfq = factory.rfq(customer)
        factory.bid(rfq, factory.cnc_supplier(), lead_time_days=None)

        card = MarketplaceEngine(db).compare_bids(rfq.id, customer.id).scorecards[0]

        assert card.lead_time_score == 50
        assert card.recommended is True

    def test_empty_and_unauthorized(self, db, factory):
        owner, other = factory.customer(), factory.customer()
        rfq = factory.rfq(owner)

        assert MarketplaceEngine(db).compare_bids(rfq.id, owner.id).scorecards == []
        with pytest.raises(NotAuthorizedError):
            MarketplaceEngine(db).compare_bids(rfq.id, other.id)
