from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .constants import CURRENCIES


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CalculationStepIn(_CamelModel):
    order: int = Field(..., ge=1)
    description: str
    calculation_details: str
    result_intermediate: float
    result_running_total: float
    explanation: Optional[str] = None
    step_type: str


class CalculationIn(_CamelModel):
    """Finished calculation handed to the history store."""

    initial_amount: float
    final_amount: float
    currency_code: str = "BRL"
    title: Optional[str] = None
    steps: List[CalculationStepIn] = Field(default_factory=list)

    @field_validator("currency_code")
    def supported_currency(cls, v: str) -> str:
        if v.upper() not in CURRENCIES:
            raise ValueError("unsupported currency")
        return v.upper()


class CalculationStepOut(CalculationStepIn):
    id: str


class CalculationOut(_CamelModel):
    id: str
    created_at: datetime
    updated_at: datetime
    initial_amount: float
    final_amount: float
    currency_code: str
    title: Optional[str] = None
    user_id: Optional[str] = None
    steps: List[CalculationStepOut] = Field(default_factory=list)
