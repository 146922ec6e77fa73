"""
Concurrent award attempts against one RFQ.
"""
from concurrent.futures import ThreadPoolExecutor

from marketplace.core.errors import MarketplaceError
from marketplace.db.models import RFQ, Bid, MarketplaceEvent, BidStatus, RFQStatus
from marketplace.services.engine import MarketplaceEngine

CONTENDERS = 50


class TestConcurrentAward:
    """Exactly one of many racing accepts may win."""

    def test_one_winner_among_fifty(self, factory, session_factory):
        customer = factory.customer()
        rfq = factory.rfq(customer)
        bid_ids = [
            factory.bid(rfq, factory.cnc_supplier(), price=1000.0 + i).id
            for i in range(CONTENDERS)
        ]
        rfq_id, customer_id = rfq.id, customer.id

        def accept(bid_id):
            session = session_factory()
            try:
                return MarketplaceEngine(session).accept_bid(rfq_id, bid_id, customer_id)
            except MarketplaceError as e:
                return e
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=CONTENDERS) as pool:
            outcomes = list(pool.map(accept, bid_ids))

        winners = [o for o in outcomes if not isinstance(o, MarketplaceError)]
        failures = [o for o in outcomes if isinstance(o, MarketplaceError)]
        assert len(winners) == 1
        assert len(failures) == CONTENDERS - 1
        winner = winners[0]

        with session_factory() as session:
            awarded = session.get(RFQ, rfq_id)
            assert awarded.status == RFQStatus.AWARDED.value
            assert awarded.awarded_bid_id == winner.id

            statuses = [status for (status,) in session.query(Bid.status).filter(Bid.rfq_id == rfq_id)]
            assert statuses.count(BidStatus.ACCEPTED.value) == 1
            assert statuses.count(BidStatus.REJECTED.value) == CONTENDERS - 1

            award_events = session.query(MarketplaceEvent).filter(
                MarketplaceEvent.rfq_id == rfq_id,
                MarketplaceEvent.event_type == "rfq_awarded",
            ).all()
            assert len(award_events) == 1
            assert award_events[0].payload["bid_id"] == winner.id
