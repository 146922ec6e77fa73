"""
Tests for match evaluation and the supplier's visible RFQ feed.
"""
from datetime import datetime, timedelta, timezone

import pytest

from marketplace.core.errors import NotFoundError
from marketplace.db.models import MarketplaceEvent
from marketplace.services.coalescing import EvaluationScope
from marketplace.services.engine import MarketplaceEngine
from marketplace.services.matching import MatchingService
from marketplace.services.suppliers import SupplierProfileService


class TestEvaluateMatch:
    """Tests for evaluate_match."""

    def test_reference_supplier_scores_65(self, db, factory):
        customer = factory.customer()
        supplier = factory.cnc_supplier()
        rfq = factory.rfq(customer)

        breakdown = MarketplaceEngine(db).evaluate_match(rfq.id, supplier.id)

        assert breakdown.total == 65
        assert breakdown.eligible is True
        assert breakdown.rfq_id == rfq.id
        assert breakdown.supplier_id == supplier.id

    def test_unknown_rfq(self, db, factory):
        supplier = factory.cnc_supplier()
        with pytest.raises(NotFoundError) as exc:
            MarketplaceEngine(db).evaluate_match(9999, supplier.id)
        assert exc.value.code == "rfq_not_found"

    def test_unknown_supplier(self, db, factory):
        rfq = factory.rfq(factory.customer())
        with pytest.raises(NotFoundError) as exc:
            MarketplaceEngine(db).evaluate_match(rfq.id, 9999)
        assert exc.value.code == "supplier_not_found"

    def test_scope_holds_only_running_evaluations(self, db, factory):
        customer = factory.customer()
        supplier = factory.cnc_supplier()
        rfq = factory.rfq(customer)
        scope = EvaluationScope()
        service = MatchingService(db, scope)

        first = service.evaluate_match(rfq.id, supplier.id)
        second = service.evaluate_match(rfq.id, supplier.id)

        assert first == second
        assert first is not second
        assert len(scope) == 0


class TestEngineReuse:
    """One engine must see writes made after its earlier evaluations."""

    def test_capability_update_is_seen(self, db, factory):
        customer = factory.customer()
        rfq = factory.rfq(customer)
        supplier = factory.supplier(capabilities=[{"process": "Sand Casting", "materials": ["Iron"]}])
        engine = MarketplaceEngine(db)

        assert engine.evaluate_match(rfq.id, supplier.id).total == 0

        SupplierProfileService(db).replace_capabilities(supplier.id, [
            {"process": "CNC Machining", "materials": ["Aluminum"]},
        ])

        assert engine.evaluate_match(rfq.id, supplier.id).total == 65
        assert MarketplaceEngine(db).evaluate_match(rfq.id, supplier.id).total == 65

    def test_own_submission_refreshes_recency(self, db, factory):
        customer = factory.customer()
        supplier = factory.cnc_supplier()
        rfq = factory.rfq(customer)

        with MarketplaceEngine(db) as engine:
            before = engine.evaluate_match(rfq.id, supplier.id)
            engine.submit_bid(rfq.id, supplier.id, 1000.0)
            after = engine.evaluate_match(rfq.id, supplier.id)

        assert before.total == 65
        assert after.total == 75

    def test_context_manager_closes_scope(self, db):
        with MarketplaceEngine(db) as engine:
            scope = engine.scope
        assert scope.run("k", lambda: len(scope)) == 0


class TestVisibleRfqs:
    """Tests for list_visible_rfqs."""

    @pytest.fixture
    def feed(self, db, factory):
        customer = factory.customer()
        supplier = factory.supplier(
            capabilities=[{"process": "CNC Machining", "materials": ["Aluminum 6061"]}],
            documents=["ISO 9001"],
        )
        rival = factory.cnc_supplier()
        now = datetime.now(timezone.utc)

        certified = factory.rfq(customer, certifications=("ISO 9001",), created_at=now - timedelta(hours=3))
        plain = factory.rfq(customer, created_at=now - timedelta(hours=1))
        molding = factory.rfq(customer, processes=("injection molding",), created_at=now)
        closed = factory.rfq(customer, status="closed", created_at=now)

        own = factory.bid(plain, supplier, price=1500.0)
        factory.bid(plain, rival, price=1400.0)
        return {
            "supplier_id": supplier.id,
            "certified_id": certified.id,
            "plain_id": plain.id,
            "molding_id": molding.id,
            "closed_id": closed.id,
            "own_bid_id": own.id,
        }

    def test_feed_is_filtered_and_ordered(self, db, feed):
        visible = MarketplaceEngine(db).list_visible_rfqs(feed["supplier_id"])

        assert [item.rfq.id for item in visible] == [feed["certified_id"], feed["plain_id"]]
        assert visible[0].score.total > visible[1].score.total
        assert all(item.score.eligible for item in visible)

    def test_feed_carries_bid_context(self, db, feed):
        visible = MarketplaceEngine(db).list_visible_rfqs(feed["supplier_id"])
        by_id = {item.rfq.id: item for item in visible}

        plain = by_id[feed["plain_id"]]
        assert plain.own_bid.id == feed["own_bid_id"]
        assert plain.live_bid_count == 2
        assert by_id[feed["certified_id"]].own_bid is None
        assert by_id[feed["certified_id"]].live_bid_count == 0

    def test_filtered_rfqs_are_logged(self, db, feed):
        MarketplaceEngine(db).list_visible_rfqs(feed["supplier_id"])

        events = db.query(MarketplaceEvent).filter(
            MarketplaceEvent.event_type == "visibility_filtered"
        ).all()
        assert [e.rfq_id for e in events] == [feed["molding_id"]]
        assert events[0].actor_type == "supplier"
        assert events[0].payload["supplier_id"] == feed["supplier_id"]
        assert events[0].payload["score"] < events[0].payload["threshold"]

    def test_equal_scores_prefer_newest(self, db, factory):
        customer = factory.customer()
        supplier = factory.cnc_supplier()
        now = datetime.now(timezone.utc)
        older = factory.rfq(customer, created_at=now - timedelta(days=2))
        newer = factory.rfq(customer, created_at=now - timedelta(days=1))

        visible = MarketplaceEngine(db).list_visible_rfqs(supplier.id)

        assert [item.rfq.id for item in visible] == [newer.id, older.id]

    def test_feed_loads_supplier_context_once(self, db, feed, monkeypatch):
        loads = []
        original = MatchingService._load_context

        def counting(service, supplier_id):
            loads.append(supplier_id)
            return original(service, supplier_id)

        monkeypatch.setattr(MatchingService, "_load_context", counting)

        MarketplaceEngine(db).list_visible_rfqs(feed["supplier_id"])

        assert loads == [feed["supplier_id"]]
