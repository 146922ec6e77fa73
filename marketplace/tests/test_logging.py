"""
Tests for the JSON log format and event mirroring.
"""
import json
import logging

from marketplace.core.logging import (
    EventLogger, MarketplaceFormatter, mask_payload, mask_text, setup_logging,
)


def make_record(message, **extra):
    record = logging.LogRecord("marketplace.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestMasking:
    def test_email_and_bearer_token(self):
        text = mask_text("from buyer7@acmeparts.io with Bearer eyJhbGciOi.abc.def")
        assert text == "from b***@acmeparts.io with Bearer [token]"

    def test_payload_private_keys(self):
        masked = mask_payload({
            "bid_id": 4,
            "notes": "can expedite if paid upfront",
            "supplier": {"contact_email": "sales@shopfloor.io", "name": "Shop"},
            "history": ["ops@shopfloor.io"],
        })
        assert masked == {
            "bid_id": 4,
            "notes": "[private]",
            "supplier": {"contact_email": "[private]", "name": "Shop"},
            "history": ["o***@shopfloor.io"],
        }


class TestMarketplaceFormatter:
    def test_ids_are_grouped_and_nulls_dropped(self):
        record = make_record("Bid write failed", rfq_id=12, supplier_id=3, bid_id=None)

        entry = json.loads(MarketplaceFormatter().format(record))

        assert entry["msg"] == "Bid write failed"
        assert entry["level"] == "INFO"
        assert entry["ids"] == {"rfq_id": 12, "supplier_id": 3}
        assert "event" not in entry
        assert "payload" not in entry

    def test_event_payload_is_masked(self):
        record = make_record(
            "bid_submitted rfq=12",
            event_type="bid_submitted",
            rfq_id=12,
            payload={"price_total": 1200.0, "notes": "private terms"},
        )

        entry = json.loads(MarketplaceFormatter().format(record))

        assert entry["event"] == "bid_submitted"
        assert entry["payload"] == {"price_total": 1200.0, "notes": "[private]"}


class TestSetupLogging:
    def test_installs_one_handler(self):
        handler = setup_logging()
        try:
            assert setup_logging() is handler
            named = [h for h in logging.getLogger().handlers if h.get_name() == handler.get_name()]
            assert len(named) == 1
            assert isinstance(handler.formatter, MarketplaceFormatter)
        finally:
            logging.getLogger().removeHandler(handler)


class TestEventLogger:
    def test_event_carries_ids_and_payload(self, caplog):
        events = EventLogger("marketplace.events.test")

        with caplog.at_level(logging.INFO, logger="marketplace.events.test"):
            events.log("rfq_awarded", rfq_id=9, actor_id=2, bid_id=5, details={"rejected_bid_ids": [6]})

        record = caplog.records[-1]
        assert record.getMessage() == "rfq_awarded rfq=9"
        assert record.event_type == "rfq_awarded"
        assert (record.rfq_id, record.actor_id, record.bid_id) == (9, 2, 5)
        assert record.payload == {"rejected_bid_ids": [6]}
