"""
Shared route dependencies.
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from marketplace.db.session import get_db
from marketplace.services.coalescing import EvaluationScope, get_evaluation_scope
from marketplace.services.engine import MarketplaceEngine


def get_engine(
    db: Session = Depends(get_db),
    scope: EvaluationScope = Depends(get_evaluation_scope),
) -> MarketplaceEngine:
    """One engine per request, sharing the request's session and scope."""
    return MarketplaceEngine(db, scope)
