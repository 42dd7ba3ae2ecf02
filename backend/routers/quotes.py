from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import StrategyNotFoundError, ValidationError
from ..pricing.catalog import DatabaseRuleCatalog
from ..pricing_engine import PricingEngine
from ..schemas import QuoteRequest

router = APIRouter(prefix="/quotes", tags=["quotes"])


def get_pricing_engine(request: Request) -> PricingEngine:
    return request.app.state.pricing_engine


@router.post("/calculate")
def calculate_quote(
    payload: QuoteRequest,
    db: Session = Depends(get_db),
    engine: PricingEngine = Depends(get_pricing_engine),
):
    """
    Price one request against the persisted rule catalog.

    422 — malformed input (ranges, ids, missing fields, unknown service type)
    400 — no pricing strategy for the service type
    """
    try:
        return engine.calculate(payload.model_dump(exclude_none=True), catalog=DatabaseRuleCatalog(db))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.to_dict())
    except StrategyNotFoundError as e:
        raise HTTPException(status_code=400, detail={
            "error": "strategy_not_found",
            "message": str(e),
            "supported_service_types": e.available,
        })
