from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class InputStep(BaseModel):
    """User authored step; position in the list is the execution order.

    ``type`` is kept as a plain string so that unknown kinds reach the engine
    and are reported with their step number.
    """

    description: str = ""
    type: str
    value: float = Field(..., allow_inf_nan=False)
    explanation: Optional[str] = None


class CalculationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: int
    description: str
    calculation_details: str
    result_intermediate: float
    result_running_total: float
    explanation: Optional[str] = None


class LegacyCalculationStep(CalculationResult):
    """Reduction step of the simple flow; keeps the BRL-named fields clients read."""

    initial_brl: float = Field(..., serialization_alias="initialBRL")
    reduction_percentage: float = Field(..., serialization_alias="reductionPercentage")
    reduction_amount_brl: float = Field(..., serialization_alias="reductionAmountBRL")
    final_brl: float = Field(..., serialization_alias="finalBRL")


class DetailedCalculationResult(BaseModel):
    steps: List[CalculationResult]
    final_result: float


class SimpleCalculationResult(BaseModel):
    steps: List[LegacyCalculationStep]
    # Converted amount before any reduction; the name is what clients expect.
    initial_brl_no_reduction: float = Field(..., serialization_alias="initialBRLNoReduction")
    final_result: float
