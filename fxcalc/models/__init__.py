"""Pydantic domain models for the currency calculator."""

from .currency import Currency, CurrencyPair, ExchangeRate, ExchangeRateMetadata
from .constants import CURRENCIES, CurrencyRegistry, StepType  # re-export
from .calculation import (
    InputStep,
    CalculationResult,
    LegacyCalculationStep,
    DetailedCalculationResult,
    SimpleCalculationResult,
)
from .history import CalculationIn, CalculationOut, CalculationStepIn

__all__ = [
    "Currency",
    "CurrencyPair",
    "ExchangeRate",
    "ExchangeRateMetadata",
    "CURRENCIES",
    "CurrencyRegistry",
    "StepType",
    "InputStep",
    "CalculationResult",
    "LegacyCalculationStep",
    "DetailedCalculationResult",
    "SimpleCalculationResult",
    "CalculationIn",
    "CalculationOut",
    "CalculationStepIn",
]
