from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional

from .. import schemas
from ..database import get_db
from ..errors import CatalogUnavailableError, ValidationError
from ..pricing.catalog import DatabaseRuleCatalog
from ..pricing.context import ServiceType, parse_service_type

router = APIRouter(prefix="/rules", tags=["rules"])


@router.get("/", response_model=List[schemas.RuleOut])
def list_rules(service_type: Optional[str] = None, db: Session = Depends(get_db)):
    """Active rules, optionally for one service type, in evaluation order."""
    try:
        types = [parse_service_type(service_type)] if service_type else list(ServiceType)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.to_dict())

    catalog = DatabaseRuleCatalog(db)
    rules = []
    try:
        for st in types:
            rules.extend(catalog.snapshot(st).all_rules())
    except CatalogUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return [r.to_dict() for r in rules]
