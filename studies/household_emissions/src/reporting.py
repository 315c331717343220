"""
Pooled survey statistics by social class.

Every measure is estimated on each completed dataset with the survey design
and combined with Rubin's rules. The original dataset (imputation 0) is not
part of the pooled analysis.
"""

import logging
from pathlib import Path
from typing import Sequence

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np
import pandas as pd

from shared.model.mi_pooling import MIAnalysis
from studies.household_emissions.src.study_config import ReportMeasure

logger = logging.getLogger(__name__)

REPORT_COLUMNS = [
    "measure",
    "statistic",
    "group",
    "estimate",
    "std_error",
    "ci_lower",
    "ci_upper",
    "df",
    "fmi",
    "n_imputations",
]

COMPARISON_COLUMNS = [
    "measure",
    "group_a",
    "group_b",
    "difference",
    "std_error",
    "ci_lower",
    "ci_upper",
    "t_stat",
    "pvalue",
    "df",
]


def format_share(value: float, maximum: float, decimals: int = 0) -> str:
    """
    ``value`` as a percentage of ``maximum``.

    A zero or missing maximum gives "0%".
    """
    if not maximum or not np.isfinite(maximum) or not np.isfinite(value):
        return f"{0:.{decimals}f}%"
    return f"{100 * value / maximum:.{decimals}f}%"


def build_report(
    analysis: MIAnalysis,
    measures: Sequence[ReportMeasure],
    by: str | None = "social_class",
    alpha: float = 0.05,
) -> pd.DataFrame:
    """
    Tidy table of pooled estimates, overall and per group.

    Returns:
        DataFrame with one row per (measure, group)
    """
    frames = []
    for measure in measures:
        kwargs = measure.estimator_kwargs
        overall = analysis.estimate(measure.statistic, measure.expression, alpha=alpha, **kwargs)
        parts = [overall]
        if by is not None:
            parts.append(
                analysis.estimate(measure.statistic, measure.expression, by=by, alpha=alpha, **kwargs)
            )
        table = pd.concat(parts).reset_index()
        table["group"] = table["group"].astype(str)
        table.insert(0, "statistic", measure.statistic)
        table.insert(0, "measure", measure.name)
        frames.append(table)
        logger.info(f"Estimated '{measure.name}' ({measure.statistic}) for {len(table)} groups")

    if not frames:
        return pd.DataFrame(columns=REPORT_COLUMNS)
    return pd.concat(frames, ignore_index=True)[REPORT_COLUMNS]


def class_shares(
    analysis: MIAnalysis,
    by: str = "social_class",
    alpha: float = 0.05,
) -> pd.DataFrame:
    """
    Pooled population share of each group, with a separate missing row.

    Returns:
        DataFrame indexed by group with estimate, std_error and CI columns
    """
    levels: list = []
    for design in analysis.designs:
        labels = design.data[by]
        if isinstance(labels.dtype, pd.CategoricalDtype):
            candidates = list(labels.cat.categories)
        else:
            candidates = sorted(labels.dropna().unique())
        for level in candidates:
            if level not in levels:
                levels.append(level)

    rows = []
    for level in levels:
        pooled = analysis.estimate(
            "mean", lambda d, level=level: (d[by] == level).fillna(False), alpha=alpha
        )
        rows.append(pooled.rename(index={"all": str(level)}))
    missing = analysis.estimate("mean", lambda d: d[by].isna(), alpha=alpha)
    rows.append(missing.rename(index={"all": "missing"}))
    return pd.concat(rows)


def compare_classes(
    analysis: MIAnalysis,
    measures: Sequence[ReportMeasure],
    pairs: Sequence[Sequence[str]],
    by: str = "social_class",
    alpha: float = 0.05,
) -> pd.DataFrame:
    """
    Pooled design-based differences in means for labelled group pairs.

    Only mean measures are compared; the difference is group_a - group_b.
    """
    rows = []
    for measure in measures:
        if measure.statistic != "mean":
            continue
        for a, b in pairs:
            pooled = analysis.ttest(measure.expression, by, (a, b), alpha=alpha)
            lower, upper = pooled.conf_int
            rows.append({
                "measure": measure.name,
                "group_a": a,
                "group_b": b,
                "difference": pooled.estimate,
                "std_error": pooled.std_error,
                "ci_lower": lower,
                "ci_upper": upper,
                "t_stat": pooled.t_stat,
                "pvalue": pooled.pvalue,
                "df": pooled.df,
            })
    return pd.DataFrame(rows, columns=COMPARISON_COLUMNS)


def plot_measure(
    report: pd.DataFrame,
    measure: str,
    path: Path | None = None,
    title: str | None = None,
    ylabel: str | None = None,
    figsize: tuple = (8, 5),
):
    """
    Bar chart of one measure by group with confidence interval error bars.

    Bars are annotated with their share of the largest estimate.

    Returns:
        Matplotlib figure (also saved as PNG when ``path`` is given)
    """
    rows = report[(report["measure"] == measure) & (report["group"] != "all")]
    if rows.empty:
        raise ValueError(f"No grouped estimates for measure '{measure}'")

    estimates = rows["estimate"].to_numpy(dtype=float)
    lower_err = estimates - rows["ci_lower"].to_numpy(dtype=float)
    upper_err = rows["ci_upper"].to_numpy(dtype=float) - estimates
    maximum = float(np.nanmax(estimates))

    fig, ax = plt.subplots(figsize=figsize)
    positions = np.arange(len(rows))
    ax.bar(positions, estimates, color="steelblue", alpha=0.8)
    ax.errorbar(
        positions,
        estimates,
        yerr=np.vstack([lower_err, upper_err]),
        fmt="none",
        ecolor="black",
        capsize=4,
        linewidth=1,
    )
    for x, y in zip(positions, estimates):
        ax.annotate(
            format_share(y, maximum),
            (x, y),
            textcoords="offset points",
            xytext=(0, 4),
            ha="center",
            fontsize=8,
        )

    ax.set_xticks(positions)
    ax.set_xticklabels(rows["group"].tolist())
    ax.set_ylabel(ylabel or measure)
    ax.set_title(title or measure)
    ax.axhline(0, color="black", linewidth=0.8)
    plt.tight_layout()

    if path is not None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(path, dpi=150)
        logger.info(f"Saved figure to {path}")
        plt.close(fig)
    return fig
