"""
Pooling of estimates across multiply imputed datasets (Rubin's rules).

For M completed datasets with point estimates Q_m and variances U_m:

    Q_bar = mean(Q_m)
    W     = mean(U_m)                     (within-imputation variance)
    B     = var(Q_m, ddof=1)              (between-imputation variance)
    T     = W + (1 + 1/M) * B             (total variance)
    df    = (M - 1) * (1 + W / ((1 + 1/M) * B))^2

References:
- Rubin (1987). Multiple Imputation for Nonresponse in Surveys. Wiley.
"""

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
from scipy import stats

from shared.model.survey import (
    ESTIMATORS,
    Expression,
    SurveyDesign,
    group_levels,
    svy_ttest,
)

logger = logging.getLogger(__name__)


@dataclass
class PooledEstimate:
    """Estimate combined across imputations."""

    estimate: float
    std_error: float
    within_variance: float
    between_variance: float
    df: float
    n_imputations: int
    alpha: float = 0.05

    @property
    def total_variance(self) -> float:
        return self.std_error ** 2

    @property
    def fraction_missing_info(self) -> float:
        """Share of total variance due to imputation."""
        if self.total_variance == 0:
            return 0.0
        m = self.n_imputations
        return (1 + 1 / m) * self.between_variance / self.total_variance

    @property
    def conf_int(self) -> tuple[float, float]:
        if np.isfinite(self.df):
            q = stats.t.ppf(1 - self.alpha / 2, self.df)
        else:
            q = stats.norm.ppf(1 - self.alpha / 2)
        return (self.estimate - q * self.std_error, self.estimate + q * self.std_error)

    @property
    def t_stat(self) -> float:
        return self.estimate / self.std_error if self.std_error > 0 else np.nan

    @property
    def pvalue(self) -> float:
        if not self.std_error > 0:
            return np.nan
        if np.isfinite(self.df):
            return float(2 * stats.t.sf(abs(self.t_stat), self.df))
        return float(2 * stats.norm.sf(abs(self.t_stat)))

    def to_dict(self) -> dict[str, float]:
        lower, upper = self.conf_int
        return {
            "estimate": self.estimate,
            "std_error": self.std_error,
            "ci_lower": lower,
            "ci_upper": upper,
            "df": self.df,
            "fmi": self.fraction_missing_info,
            "n_imputations": self.n_imputations,
        }


def pool_estimates(
    estimates: Sequence[float],
    variances: Sequence[float],
    alpha: float = 0.05,
) -> PooledEstimate:
    """
    Combine point estimates and variances with Rubin's rules.

    Args:
        estimates: One point estimate per completed dataset
        variances: Matching sampling variances
        alpha: Significance level for the confidence interval

    Returns:
        PooledEstimate
    """
    q = np.asarray(estimates, dtype=float)
    u = np.asarray(variances, dtype=float)
    if q.shape != u.shape or q.ndim != 1 or len(q) == 0:
        raise ValueError("estimates and variances must be non-empty 1-D sequences of equal length")

    m = len(q)
    q_bar = float(q.mean())
    within = float(u.mean())
    between = float(q.var(ddof=1)) if m > 1 else 0.0
    total = within + (1 + 1 / m) * between

    if between > 0 and m > 1:
        df = (m - 1) * (1 + within / ((1 + 1 / m) * between)) ** 2
    else:
        df = np.inf

    return PooledEstimate(
        estimate=q_bar,
        std_error=float(np.sqrt(total)),
        within_variance=within,
        between_variance=between,
        df=float(df),
        n_imputations=m,
        alpha=alpha,
    )


class MIAnalysis:
    """
    Survey analysis repeated over completed datasets and pooled.

    The original (uncompleted) dataset is not passed here; callers hand over
    the M completed datasets only.
    """

    def __init__(
        self,
        datasets: Sequence[pd.DataFrame],
        weights: str,
        strata: str | None = None,
        psu: str | None = None,
    ):
        if not datasets:
            raise ValueError("At least one completed dataset is required")
        self.designs = [SurveyDesign(df, weights, strata=strata, psu=psu) for df in datasets]

    @property
    def n_imputations(self) -> int:
        return len(self.designs)

    def estimate(
        self,
        statistic: str,
        y: Expression,
        by: str | None = None,
        alpha: float = 0.05,
        **kwargs,
    ) -> pd.DataFrame:
        """
        Pooled estimate of a statistic, optionally by group.

        Args:
            statistic: One of "mean", "total", "ratio", "quantile"
            y: Expression to summarise
            by: Optional grouping column (e.g. social class)
            alpha: Significance level
            **kwargs: Passed to the estimator (denominator, q)

        Returns:
            DataFrame with one row per group (or a single "all" row)
        """
        if statistic not in ESTIMATORS:
            raise ValueError(f"Unknown statistic: {statistic}. Available: {list(ESTIMATORS)}")
        estimator = ESTIMATORS[statistic]

        if by is None:
            results = [estimator(d, y, **kwargs) for d in self.designs]
            pooled = pool_estimates(
                [r.estimate for r in results], [r.variance for r in results], alpha
            )
            return pd.DataFrame([{"group": "all", **pooled.to_dict()}]).set_index("group")

        levels: list = []
        for design in self.designs:
            for level in group_levels(design.data[by]):
                if level not in levels:
                    levels.append(level)

        rows = []
        for level in levels:
            ests, variances = [], []
            for design in self.designs:
                mask = (design.data[by] == level).fillna(False).to_numpy()
                if not mask.any():
                    continue
                r = estimator(design, y, domain=mask, **kwargs)
                ests.append(r.estimate)
                variances.append(r.variance)

            if len(ests) < self.n_imputations:
                logger.warning(
                    f"Group '{level}' present in {len(ests)}/{self.n_imputations} imputations"
                )
            pooled = pool_estimates(ests, variances, alpha)
            rows.append({"group": level, **pooled.to_dict()})

        return pd.DataFrame(rows).set_index("group")

    def ttest(
        self,
        y: Expression,
        group: str,
        levels: tuple[str, str],
        alpha: float = 0.05,
    ) -> PooledEstimate:
        """Pooled difference in means between two groups."""
        results = [svy_ttest(d, y, group, levels) for d in self.designs]
        pooled = pool_estimates(
            [r.difference for r in results],
            [r.std_error ** 2 for r in results],
            alpha,
        )
        # Design df caps the pooled df
        design_df = min(r.df for r in results)
        if pooled.df > design_df:
            pooled.df = float(design_df)
        return pooled
