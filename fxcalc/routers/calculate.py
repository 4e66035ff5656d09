from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from fxcalc.core.errors import ValidationError
from fxcalc.models.constants import CURRENCIES, STEP_TYPE_LABELS
from fxcalc.models.currency import Currency
from fxcalc.services.calculator import CalculatorService

router = APIRouter(prefix="/api", tags=["calculate"])

_calculator = CalculatorService()


# Dependencies -----------------------------------------------------


def get_calculator() -> CalculatorService:
    return _calculator


# Request / Response Models ----------------------------------------
class CalculateRequest(BaseModel):
    """Detailed mode when ``steps`` is non-empty, simple mode otherwise.

    Steps stay raw dicts here so that malformed steps are reported by the
    calculator with their position instead of as a request validation error.
    """

    model_config = ConfigDict(populate_by_name=True)

    steps: Optional[List[Dict[str, Any]]] = None
    initial_amount_usd: Optional[float] = Field(None, alias="initialAmountUSD")
    exchange_rate: Optional[float] = Field(None, alias="exchangeRate")
    reductions: Optional[str] = None
    source_currency: Optional[str] = Field(None, alias="sourceCurrency")
    target_currency: Optional[str] = Field(None, alias="targetCurrency")


def _currency(code: Optional[str]) -> Optional[Currency]:
    if not code:
        return None
    currency = CURRENCIES.get(code)
    if currency is None:
        raise ValidationError(f"Currency {code} is not supported")
    return currency


# Routes -----------------------------------------------------------
@router.post("/calculate", summary="Run a detailed or simple calculation")
async def calculate(
    payload: CalculateRequest,
    calculator: CalculatorService = Depends(get_calculator),
):
    source = _currency(payload.source_currency)
    target = _currency(payload.target_currency)
    if payload.steps:
        result = calculator.process_detailed_calculation(payload.steps, source, target)
        return result.model_dump(by_alias=True)
    if payload.initial_amount_usd and payload.exchange_rate:
        result = calculator.process_simple_calculation(
            payload.initial_amount_usd,
            payload.exchange_rate,
            payload.reductions or "",
            source,
            target,
        )
        return result.model_dump(by_alias=True)
    raise ValidationError("Missing required fields")


@router.get("/step-types", summary="Calculation step kinds and their labels")
async def step_types():
    return {"stepTypes": [{"type": k, "label": v} for k, v in STEP_TYPE_LABELS.items()]}
