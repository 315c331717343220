"""
Shared model infrastructure.

Contains:
- survey.py: Design-based means, totals, ratios, quantiles, t-tests
- mi_pooling.py: Rubin's rules and pooled analysis across imputations
"""

from shared.model.survey import (
    SurveyDesign,
    SurveyEstimate,
    TTestResult,
    resolve_expression,
    svy_by,
    svy_mean,
    svy_quantile,
    svy_ratio,
    svy_total,
    svy_ttest,
    weighted_quantile,
)
from shared.model.mi_pooling import MIAnalysis, PooledEstimate, pool_estimates

__all__ = [
    "SurveyDesign",
    "SurveyEstimate",
    "TTestResult",
    "resolve_expression",
    "svy_by",
    "svy_mean",
    "svy_quantile",
    "svy_ratio",
    "svy_total",
    "svy_ttest",
    "weighted_quantile",
    "MIAnalysis",
    "PooledEstimate",
    "pool_estimates",
]
