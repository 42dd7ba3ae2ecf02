from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Union

# Domain checks (ranges, UUID shape, required fields per service type) happen in
# CalculationContext / ScopeResolver so HTTP and direct callers get the same errors.

Selection = Union[List[str], Dict[str, Any]]


class AddressInput(BaseModel):
    floor: Optional[int] = None
    elevator: Optional[Union[bool, str]] = None
    carry_distance: Optional[float] = Field(None, alias="carryDistance")
    address: Optional[str] = None
    selections: Optional[Selection] = None  # constraints/services declared at this address

    class Config:
        populate_by_name = True
        extra = "forbid"


class QuoteRequest(BaseModel):
    service_type: str = Field(..., alias="serviceType")
    volume: Optional[float] = None
    distance: Optional[float] = None
    duration: Optional[float] = None
    workers: Optional[int] = None
    scheduled_date: Optional[str] = Field(None, alias="scheduledDate")
    default_price: Optional[float] = Field(None, alias="defaultPrice")
    base_price: Optional[float] = Field(None, alias="basePrice")
    pickup: Optional[AddressInput] = None
    delivery: Optional[AddressInput] = None
    global_selections: Optional[Selection] = Field(None, alias="globalSelections")
    options: Dict[str, Any] = {}
    auto_detection: Optional[bool] = Field(None, alias="autoDetection")

    class Config:
        populate_by_name = True
        extra = "forbid"


class RuleOut(BaseModel):
    id: str
    name: str
    service_type: str
    value: float
    is_percentage: bool
    scope: str
    category: str
    kind: str
    condition: Dict[str, Any]
    priority: int
    is_active: bool
