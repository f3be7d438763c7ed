"""
Applicability Screening Models
==============================

Value models produced by the screening engine.

Models:
- ScreeningResult: one organization screened at one tier
- RiskAssessment: comprehensive-tier risk summary
- AggregatedLawSet: deduplicated laws across locations

Version: 0.1.0
"""

from services.applicability.models.screening import (
    DEGRADED_METHOD,
    DUTY_FILTER_TAG,
    TIER_CONFIDENCE,
    TIER_ORDER,
    AggregatedLawSet,
    AggregationMode,
    ComplexityTier,
    ConfidenceLevel,
    RiskAssessment,
    ScreeningResult,
)


__all__ = [
    "ComplexityTier",
    "TIER_ORDER",
    "ConfidenceLevel",
    "TIER_CONFIDENCE",
    "DUTY_FILTER_TAG",
    "DEGRADED_METHOD",
    "RiskAssessment",
    "ScreeningResult",
    "AggregationMode",
    "AggregatedLawSet",
]
