"""Step calculation engine.

Two entry points share the ledger format:

    - ``process_detailed_calculation`` walks an ordered list of typed steps and
      threads a running total through them (the list order is the execution
      order).
    - ``process_simple_calculation`` converts ``amount * rate`` and applies a
      comma separated list of percentage reductions.

Both are pure and synchronous. Any invalid step aborts the whole calculation
with a ``ValidationError``; no partial ledger is ever returned.

The detailed flow rejects a running total below zero; the simple flow rejects
a balance of zero or less after a reduction, so a 100% reduction fails only
there.
"""

from __future__ import annotations

import logging
import math
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from fxcalc.core.errors import ValidationError
from fxcalc.models.calculation import (
    CalculationResult,
    DetailedCalculationResult,
    InputStep,
    LegacyCalculationStep,
    SimpleCalculationResult,
)
from fxcalc.models.constants import DEFAULT_SOURCE_CODE, DEFAULT_TARGET_CODE, StepType
from fxcalc.models.currency import Currency
from fxcalc.services.money import format_amount, format_number

logger = logging.getLogger("fxcalc.calculator")

StepLike = Union[InputStep, Mapping[str, Any]]

_REQUIRES_RUNNING_TOTAL = {
    StepType.EXCHANGE_RATE: "Exchange rate step requires a previous initial value step",
    StepType.PERCENTAGE_REDUCTION: "Percentage reduction step requires a previous value step",
    StepType.FIXED_REDUCTION: "Fixed reduction step requires a previous value step",
}


def _raw_type(raw: StepLike) -> Any:
    if isinstance(raw, InputStep):
        return raw.type
    if isinstance(raw, Mapping):
        return raw.get("type")
    return None


def _coerce_step(index: int, raw: StepLike) -> InputStep:
    if isinstance(raw, InputStep):
        return raw
    try:
        return InputStep.model_validate(raw)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "step"
        raise ValidationError(
            f"Step {index}: invalid {field}: {first.get('msg', 'invalid value')}"
        ) from e


def parse_reductions(reductions: Optional[str]) -> List[float]:
    """Split ``"10, 20,,30"`` into ``[10.0, 20.0, 30.0]`` and validate each value."""
    if not reductions:
        return []
    tokens = [t.strip() for t in reductions.split(",")]
    values: List[float] = []
    invalid = False
    for token in tokens:
        if not token:
            continue
        try:
            value = float(token)
        except ValueError:
            invalid = True
            continue
        if not math.isfinite(value):
            invalid = True
            continue
        values.append(value)
    if invalid:
        raise ValidationError("All reductions must be valid numbers")
    if any(v < 0 or v > 100 for v in values):
        raise ValidationError("All reductions must be between 0 and 100")
    return values


class CalculatorService:
    """Stateless calculator; one instance can be shared by all requests."""

    def process_detailed_calculation(
        self,
        steps: Sequence[StepLike],
        source_currency: Optional[Currency] = None,
        target_currency: Optional[Currency] = None,
    ) -> DetailedCalculationResult:
        if not steps:
            raise ValidationError("No calculation steps provided")

        if not any(_raw_type(s) == StepType.INITIAL.value for s in steps):
            raise ValidationError("An Initial Value step is required for calculation")

        input_steps = [_coerce_step(i, s) for i, s in enumerate(steps, start=1)]
        logger.info(
            "processing detailed calculation",
            extra={"context": {"steps": [(s.type, s.value) for s in input_steps]}},
        )

        source_code = source_currency.code if source_currency else DEFAULT_SOURCE_CODE
        target_code = target_currency.code if target_currency else DEFAULT_TARGET_CODE

        processed: List[CalculationResult] = []
        running_total = 0.0
        for number, step in enumerate(input_steps, start=1):
            intermediate, running_total, details = self._apply_step(
                number, step, running_total, source_code, target_code
            )
            if running_total < 0:
                raise ValidationError(
                    f"Step {number} would result in a negative value "
                    f"({format_amount(running_total)})"
                )
            logger.debug(
                "step %d (%s): intermediate=%s running_total=%s",
                number,
                step.type,
                intermediate,
                running_total,
            )
            processed.append(
                CalculationResult(
                    step=number,
                    description=step.description,
                    calculation_details=details,
                    result_intermediate=intermediate,
                    result_running_total=running_total,
                    explanation=step.explanation,
                )
            )

        return DetailedCalculationResult(steps=processed, final_result=running_total)

    def _apply_step(
        self,
        number: int,
        step: InputStep,
        running_total: float,
        source_code: str,
        target_code: str,
    ) -> Tuple[float, float, str]:
        """Return ``(result_intermediate, new_running_total, calculation_details)``."""
        try:
            kind = StepType(step.type)
        except ValueError:
            raise ValidationError(f"Step {number}: Unknown step type: {step.type}") from None

        prefix = _REQUIRES_RUNNING_TOTAL.get(kind)
        if prefix and running_total == 0:
            raise ValidationError(f"Step {number}: {prefix} or non-zero running total")

        value = step.value
        if kind is StepType.INITIAL:
            return value, value, f"Initial value: {format_amount(value)} {source_code}"

        if kind is StepType.EXCHANGE_RATE:
            converted = value * running_total
            details = (
                f"{format_amount(running_total)} {source_code} × {format_amount(value, 3)}"
                f" = {format_amount(converted)} {target_code}"
            )
            return converted, converted, details

        if kind is StepType.PERCENTAGE_REDUCTION:
            fraction = value / 100
            reduction = running_total * fraction
            details = (
                f"{format_amount(running_total)} × {format_number(fraction)}"
                f" = {format_amount(reduction)}"
            )
            return reduction, running_total - reduction, details

        if kind is StepType.FIXED_REDUCTION:
            return value, running_total - value, f"Fixed reduction: {format_amount(value)}"

        if kind is StepType.ADDITION:
            return value, running_total + value, f"Addition: {format_amount(value)}"

        # custom: the caller supplies the already computed result
        return value, value, f"Custom calculation: {format_amount(value)}"

    def process_simple_calculation(
        self,
        initial_amount: float,
        exchange_rate: float,
        reductions: Optional[str] = "",
        source_currency: Optional[Currency] = None,
        target_currency: Optional[Currency] = None,
    ) -> SimpleCalculationResult:
        if not initial_amount or not exchange_rate:
            raise ValidationError("Missing required fields")
        if not (initial_amount > 0 and exchange_rate > 0) or not (
            math.isfinite(initial_amount) and math.isfinite(exchange_rate)
        ):
            raise ValidationError("Initial amount and exchange rate must be positive numbers")

        percentages = parse_reductions(reductions)
        target_code = target_currency.code if target_currency else DEFAULT_TARGET_CODE

        converted = initial_amount * exchange_rate
        balance = converted
        steps: List[LegacyCalculationStep] = []
        for number, pct in enumerate(percentages, start=1):
            reduction = balance * (pct / 100)
            final = balance - reduction
            if final <= 0:
                raise ValidationError(
                    "Reduction would result in zero or negative value. Please adjust percentages."
                )
            steps.append(
                LegacyCalculationStep(
                    step=number,
                    description=f"Reduction {number}: {format_number(pct)}%",
                    calculation_details=(
                        f"{format_amount(balance)} {target_code} - {format_number(pct)}%"
                        f" = {format_amount(final)} {target_code}"
                    ),
                    result_intermediate=reduction,
                    result_running_total=final,
                    initial_brl=balance,
                    reduction_percentage=pct,
                    reduction_amount_brl=reduction,
                    final_brl=final,
                )
            )
            balance = final

        logger.info(
            "simple calculation done",
            extra={"context": {"reductions": len(steps), "final_result": balance}},
        )
        return SimpleCalculationResult(
            steps=steps, initial_brl_no_reduction=converted, final_result=balance
        )
