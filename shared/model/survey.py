"""
Design-based estimators for weighted survey data.

Implements:
- SurveyDesign: weights with optional strata and primary sampling units
- Means, totals, ratios and quantiles with Taylor-linearised standard errors
- Domain (subgroup) estimation that keeps the full design
- Two-sample design-based t-test for a difference in domain means

Variance of an estimated total of per-observation scores z_i:

    V = sum_h n_h / (n_h - 1) * sum_j (z_hj - mean_h(z))^2

where z_hj sums the scores within PSU j of stratum h. When no PSU is given,
every row is its own PSU; when no strata are given there is one stratum.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Union

import numpy as np
import pandas as pd
from scipy import stats

logger = logging.getLogger(__name__)

Expression = Union[str, Callable[[pd.DataFrame], pd.Series]]


@dataclass
class SurveyEstimate:
    """A design-based point estimate with its linearised standard error."""

    estimate: float
    std_error: float
    n_obs: int
    statistic: str = "mean"

    @property
    def variance(self) -> float:
        return self.std_error ** 2

    def conf_int(self, alpha: float = 0.05, df: float | None = None) -> tuple[float, float]:
        """Confidence interval using a t (df given) or normal reference."""
        if df is None or not np.isfinite(df):
            q = stats.norm.ppf(1 - alpha / 2)
        else:
            q = stats.t.ppf(1 - alpha / 2, df)
        return (self.estimate - q * self.std_error, self.estimate + q * self.std_error)


@dataclass
class TTestResult:
    """Results from a design-based two-sample t-test."""

    difference: float
    std_error: float
    t_stat: float
    pvalue: float
    df: float
    levels: tuple[str, str]
    n_obs: int

    def summary(self) -> str:
        a, b = self.levels
        return (
            f"Mean difference ({a} - {b}): {self.difference:.4f} "
            f"(SE {self.std_error:.4f}, t = {self.t_stat:.2f}, "
            f"df = {self.df:.0f}, p = {self.pvalue:.4f})"
        )


def resolve_expression(data: pd.DataFrame, expr: Expression) -> pd.Series:
    """
    Evaluate a derived expression over a DataFrame.

    Args:
        data: Source data
        expr: Column name, ``DataFrame.eval`` expression, or callable

    Returns:
        Float Series aligned with ``data``
    """
    if callable(expr):
        values = expr(data)
    elif expr in data.columns:
        values = data[expr]
    else:
        values = data.eval(expr)

    values = pd.Series(values, index=data.index)
    if pd.api.types.is_bool_dtype(values):
        values = values.astype(float)
    # Shares over a zero denominator are treated as missing
    values = pd.to_numeric(values, errors="coerce").astype(float)
    return values.replace([np.inf, -np.inf], np.nan)


class SurveyDesign:
    """
    Survey design: weights plus optional strata and PSU identifiers.

    Weights must be strictly positive. PSU identifiers are nested within
    strata, so the same PSU label in two strata denotes two PSUs.
    """

    def __init__(
        self,
        data: pd.DataFrame,
        weights: str,
        strata: str | None = None,
        psu: str | None = None,
    ):
        if weights not in data.columns:
            raise ValueError(f"Weight column '{weights}' not in data")

        w = pd.to_numeric(data[weights], errors="coerce").to_numpy(dtype=float)
        if np.isnan(w).any() or (w <= 0).any():
            raise ValueError("Survey weights must be present and strictly positive")

        self.data = data.reset_index(drop=True)
        self.weights_name = weights
        self.w = w

        n = len(self.data)
        if strata is not None:
            self._strata = pd.factorize(self.data[strata])[0]
        else:
            self._strata = np.zeros(n, dtype=int)

        if psu is not None:
            pairs = pd.Series(list(zip(self._strata, self.data[psu])))
            self._psu = pd.factorize(pairs)[0]
        else:
            self._psu = np.arange(n)

        self.strata_name = strata
        self.psu_name = psu

    @property
    def n_obs(self) -> int:
        return len(self.data)

    @property
    def n_psu(self) -> int:
        return int(len(np.unique(self._psu)))

    @property
    def n_strata(self) -> int:
        return int(len(np.unique(self._strata)))

    @property
    def degrees_of_freedom(self) -> int:
        """Design degrees of freedom: number of PSUs minus number of strata."""
        return self.n_psu - self.n_strata

    def values(self, expr: Expression) -> np.ndarray:
        return resolve_expression(self.data, expr).to_numpy()

    def domain(self, mask: pd.Series | np.ndarray | None) -> np.ndarray:
        """Boolean domain indicator aligned with the design rows."""
        if mask is None:
            return np.ones(self.n_obs, dtype=bool)
        return np.asarray(mask, dtype=bool)

    def total_variance(self, scores: np.ndarray) -> float:
        """Linearised variance of the estimated total of ``scores``."""
        df = pd.DataFrame({"stratum": self._strata, "psu": self._psu, "z": scores})
        psu_totals = df.groupby(["stratum", "psu"], sort=False)["z"].sum().reset_index()

        variance = 0.0
        lonely = 0
        for _, group in psu_totals.groupby("stratum", sort=False):
            n_h = len(group)
            if n_h < 2:
                lonely += 1
                continue
            z = group["z"].to_numpy()
            variance += n_h / (n_h - 1) * np.sum((z - z.mean()) ** 2)

        if lonely:
            logger.warning(f"{lonely} strata with a single PSU contribute no variance")
        return float(variance)


def _observed(design: SurveyDesign, y: np.ndarray, domain: np.ndarray) -> np.ndarray:
    """Domain rows with a non-missing outcome."""
    return domain & ~np.isnan(y)


def svy_total(
    design: SurveyDesign,
    y: Expression,
    domain: pd.Series | np.ndarray | None = None,
) -> SurveyEstimate:
    """Estimated population total of ``y`` over a domain."""
    values = design.values(y)
    d = _observed(design, values, design.domain(domain))

    z = np.where(d, design.w * np.nan_to_num(values), 0.0)
    estimate = float(z.sum())
    se = np.sqrt(design.total_variance(z))
    return SurveyEstimate(estimate, float(se), int(d.sum()), statistic="total")


def svy_mean(
    design: SurveyDesign,
    y: Expression,
    domain: pd.Series | np.ndarray | None = None,
) -> SurveyEstimate:
    """Estimated population mean of ``y`` over a domain."""
    values = design.values(y)
    d = _observed(design, values, design.domain(domain))

    n_hat = float(design.w[d].sum())
    if n_hat == 0:
        return SurveyEstimate(np.nan, np.nan, 0, statistic="mean")

    mean = float(np.sum(design.w[d] * values[d]) / n_hat)
    u = np.where(d, (np.nan_to_num(values) - mean) / n_hat, 0.0)
    se = np.sqrt(design.total_variance(design.w * u))
    return SurveyEstimate(mean, float(se), int(d.sum()), statistic="mean")


def svy_ratio(
    design: SurveyDesign,
    numerator: Expression,
    denominator: Expression,
    domain: pd.Series | np.ndarray | None = None,
) -> SurveyEstimate:
    """
    Ratio of two estimated totals, e.g. emissions per unit of expenditure.

    A zero denominator total yields a zero ratio rather than NaN.
    """
    y = design.values(numerator)
    x = design.values(denominator)
    d = design.domain(domain) & ~np.isnan(y) & ~np.isnan(x)

    y_hat = float(np.sum(design.w[d] * y[d]))
    x_hat = float(np.sum(design.w[d] * x[d]))
    if x_hat == 0:
        return SurveyEstimate(0.0, 0.0, int(d.sum()), statistic="ratio")

    ratio = y_hat / x_hat
    u = np.where(d, (np.nan_to_num(y) - ratio * np.nan_to_num(x)) / x_hat, 0.0)
    se = np.sqrt(design.total_variance(design.w * u))
    return SurveyEstimate(ratio, float(se), int(d.sum()), statistic="ratio")


def weighted_quantile(values: np.ndarray, weights: np.ndarray, q: float) -> float:
    """
    Weighted quantile: smallest value whose weighted CDF reaches ``q``.

    Args:
        values: Observations (no missing values)
        weights: Positive weights
        q: Probability in [0, 1]
    """
    if len(values) == 0:
        return np.nan
    order = np.argsort(values, kind="mergesort")
    v = values[order]
    cdf = np.cumsum(weights[order]) / weights.sum()
    idx = int(np.searchsorted(cdf, q - 1e-12, side="left"))
    return float(v[min(idx, len(v) - 1)])


def svy_quantile(
    design: SurveyDesign,
    y: Expression,
    q: float = 0.5,
    domain: pd.Series | np.ndarray | None = None,
    alpha: float = 0.05,
) -> SurveyEstimate:
    """
    Weighted quantile with a Woodruff standard error.

    The standard error of the estimated CDF at the quantile is mapped back
    through the inverse CDF; SE = (upper - lower) / (2 * z).
    """
    if not 0 <= q <= 1:
        raise ValueError(f"Quantile must be in [0, 1], got {q}")

    values = design.values(y)
    d = _observed(design, values, design.domain(domain))
    if not d.any():
        return SurveyEstimate(np.nan, np.nan, 0, statistic=f"q{q:g}")

    v, w = values[d], design.w[d]
    estimate = weighted_quantile(v, w, q)

    below = pd.Series(np.where(np.isnan(values), np.nan, values <= estimate), dtype=float)
    p_se = svy_mean(design, lambda _: below, domain=d).std_error

    z = stats.norm.ppf(1 - alpha / 2)
    lower = weighted_quantile(v, w, max(q - z * p_se, 0.0))
    upper = weighted_quantile(v, w, min(q + z * p_se, 1.0))
    se = (upper - lower) / (2 * z)
    return SurveyEstimate(estimate, float(se), int(d.sum()), statistic=f"q{q:g}")


def svy_ttest(
    design: SurveyDesign,
    y: Expression,
    group: str,
    levels: tuple[str, str],
) -> TTestResult:
    """
    Design-based t-test for the difference in means between two groups.

    The difference is ``mean(levels[0]) - mean(levels[1])``. Its variance is
    linearised over the full design; the reference distribution is t with
    the design degrees of freedom minus one.
    """
    a, b = levels
    values = design.values(y)
    labels = design.data[group]
    in_a = (labels == a).fillna(False).to_numpy() & ~np.isnan(values)
    in_b = (labels == b).fillna(False).to_numpy() & ~np.isnan(values)

    n_a = float(design.w[in_a].sum())
    n_b = float(design.w[in_b].sum())
    if n_a == 0 or n_b == 0:
        raise ValueError(f"Both groups must be non-empty: {a}={in_a.sum()}, {b}={in_b.sum()}")

    mean_a = float(np.sum(design.w[in_a] * values[in_a]) / n_a)
    mean_b = float(np.sum(design.w[in_b] * values[in_b]) / n_b)
    clean = np.nan_to_num(values)
    u = (
        np.where(in_a, (clean - mean_a) / n_a, 0.0)
        - np.where(in_b, (clean - mean_b) / n_b, 0.0)
    )
    se = float(np.sqrt(design.total_variance(design.w * u)))

    diff = mean_a - mean_b
    df = max(design.degrees_of_freedom - 1, 1)
    t_stat = diff / se if se > 0 else np.inf * np.sign(diff)
    pvalue = float(2 * stats.t.sf(abs(t_stat), df)) if se > 0 else 0.0

    return TTestResult(
        difference=diff,
        std_error=se,
        t_stat=float(t_stat),
        pvalue=pvalue,
        df=float(df),
        levels=(str(a), str(b)),
        n_obs=int(in_a.sum() + in_b.sum()),
    )


ESTIMATORS: dict[str, Callable[..., SurveyEstimate]] = {
    "mean": svy_mean,
    "total": svy_total,
    "ratio": svy_ratio,
    "quantile": svy_quantile,
}


def group_levels(series: pd.Series) -> list:
    """Non-missing group levels, in categorical order where defined."""
    if isinstance(series.dtype, pd.CategoricalDtype):
        present = set(series.dropna().unique())
        return [c for c in series.cat.categories if c in present]
    return sorted(series.dropna().unique())


def svy_by(
    design: SurveyDesign,
    by: str,
    statistic: str,
    y: Expression,
    **kwargs,
) -> pd.DataFrame:
    """
    Domain estimates for each level of ``by``.

    Rows with a missing group are excluded from every domain.

    Returns:
        DataFrame indexed by group with estimate, std_error and n_obs
    """
    if statistic not in ESTIMATORS:
        raise ValueError(f"Unknown statistic: {statistic}. Available: {list(ESTIMATORS)}")
    estimator = ESTIMATORS[statistic]

    labels = design.data[by]
    rows = []
    for level in group_levels(labels):
        mask = (labels == level).fillna(False).to_numpy()
        est = estimator(design, y, domain=mask, **kwargs)
        rows.append({
            by: level,
            "estimate": est.estimate,
            "std_error": est.std_error,
            "n_obs": est.n_obs,
        })

    return pd.DataFrame(rows).set_index(by) if rows else pd.DataFrame(
        columns=["estimate", "std_error", "n_obs"]
    )
