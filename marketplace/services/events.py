"""
Domain event log.

Every event is stored in marketplace_events and mirrored into the
structured log through event_logger.
"""
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.core.logging import event_logger, get_logger
from marketplace.db.models import MarketplaceEvent, ActorType

logger = get_logger(__name__)


def add_event(
    db: Session,
    event_type: str,
    rfq_id: Optional[int] = None,
    actor_type: ActorType = ActorType.SYSTEM,
    actor_id: Optional[int] = None,
    supplier_id: Optional[int] = None,
    bid_id: Optional[int] = None,
    payload: Optional[dict] = None,
) -> MarketplaceEvent:
    """
    Stage an event in the caller's transaction.

    Lifecycle operations use this so the event commits (or rolls back)
    together with the state change it describes.
    """
    event = MarketplaceEvent(
        rfq_id=rfq_id,
        event_type=event_type,
        actor_type=ActorType(actor_type).value,
        actor_id=actor_id,
        payload=payload or {},
    )
    db.add(event)
    event_logger.log(
        event_type,
        rfq_id=rfq_id,
        actor_id=actor_id,
        supplier_id=supplier_id,
        bid_id=bid_id,
        details=payload,
    )
    return event


def log_read_events(db: Session, events: List[dict]) -> bool:
    """
    Record events from a read path (scoring, pressure, pricing) in one commit.

    Each item holds the add_event keyword arguments. A failed write is
    logged and dropped so the read itself still succeeds.
    """
    if not events:
        return True
    try:
        for event in events:
            add_event(db, **event)
        db.commit()
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(
            f"Could not persist {len(events)} read-path event(s): {e.__class__.__name__}",
            extra={"event_type": events[0].get("event_type"), "rfq_id": events[0].get("rfq_id")},
        )
        return False


def log_read_event(db: Session, event_type: str, **kwargs) -> bool:
    return log_read_events(db, [dict(kwargs, event_type=event_type)])


def list_events(db: Session, rfq_id: int, limit: int = 100):
    return db.query(MarketplaceEvent).filter(
        MarketplaceEvent.rfq_id == rfq_id
    ).order_by(MarketplaceEvent.created_at, MarketplaceEvent.id).limit(limit).all()
