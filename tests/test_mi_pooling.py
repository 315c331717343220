"""
Tests for Rubin's rules pooling across imputations.
"""

import numpy as np
import pandas as pd
import pytest

from shared.model.mi_pooling import MIAnalysis, pool_estimates


class TestPoolEstimates:
    """Test Rubin's combination rules."""

    def test_known_values(self):
        """W = 0.5, B = 1, M = 3."""
        pooled = pool_estimates([1.0, 2.0, 3.0], [0.5, 0.5, 0.5])

        assert pooled.estimate == pytest.approx(2.0)
        assert pooled.within_variance == pytest.approx(0.5)
        assert pooled.between_variance == pytest.approx(1.0)
        assert pooled.total_variance == pytest.approx(0.5 + (1 + 1 / 3) * 1.0)
        assert pooled.df == pytest.approx(2 * (1 + 0.5 / (4 / 3)) ** 2)
        assert pooled.fraction_missing_info == pytest.approx((4 / 3) / (0.5 + 4 / 3))

    def test_no_between_variance(self):
        """Identical estimates: total = within, infinite df."""
        pooled = pool_estimates([5.0] * 4, [0.25, 0.25, 0.25, 0.25])
        assert pooled.std_error == pytest.approx(0.5)
        assert np.isinf(pooled.df)
        assert pooled.fraction_missing_info == 0.0

        lower, upper = pooled.conf_int
        assert lower == pytest.approx(5.0 - 1.959964 * 0.5, rel=1e-5)
        assert upper == pytest.approx(5.0 + 1.959964 * 0.5, rel=1e-5)

    def test_single_imputation(self):
        pooled = pool_estimates([1.0], [0.04])
        assert pooled.std_error == pytest.approx(0.2)
        assert np.isinf(pooled.df)

    def test_between_variance_widens_interval(self):
        narrow = pool_estimates([1.0, 1.0, 1.0], [0.1, 0.1, 0.1])
        wide = pool_estimates([0.5, 1.0, 1.5], [0.1, 0.1, 0.1])
        assert wide.std_error > narrow.std_error

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            pool_estimates([1.0, 2.0], [0.1])
        with pytest.raises(ValueError):
            pool_estimates([], [])

    def test_to_dict_keys(self):
        row = pool_estimates([1.0, 2.0], [0.1, 0.2]).to_dict()
        assert set(row) == {
            "estimate", "std_error", "ci_lower", "ci_upper", "df", "fmi", "n_imputations"
        }
        assert row["ci_lower"] < row["estimate"] < row["ci_upper"]


class TestMIAnalysis:
    """Test survey analysis pooled over completed datasets."""

    @pytest.fixture
    def datasets(self):
        """Three completed datasets differing only in the imputed group."""
        rng = np.random.default_rng(3)
        n = 80
        base = pd.DataFrame({
            "y": rng.normal(5, 1, n),
            "w": rng.uniform(1, 2, n),
        })
        out = []
        for m in range(3):
            d = base.copy()
            d["group"] = np.where(rng.random(n) < 0.5, "a", "b")
            out.append(d)
        return out

    def test_overall_mean_has_no_between_variance(self, datasets):
        """y is identical across datasets, so B = 0."""
        analysis = MIAnalysis(datasets, "w")
        table = analysis.estimate("mean", "y")

        assert list(table.index) == ["all"]
        row = table.loc["all"]
        expected = np.average(datasets[0]["y"], weights=datasets[0]["w"])
        assert row["estimate"] == pytest.approx(expected)
        assert row["fmi"] == pytest.approx(0.0)
        assert row["n_imputations"] == 3

    def test_by_group(self, datasets):
        analysis = MIAnalysis(datasets, "w")
        table = analysis.estimate("mean", "y", by="group")
        assert list(table.index) == ["a", "b"]
        assert (table["std_error"] > 0).all()

    def test_ratio_kwargs(self, datasets):
        analysis = MIAnalysis(datasets, "w")
        table = analysis.estimate("ratio", "y", denominator="y")
        assert table.loc["all", "estimate"] == pytest.approx(1.0)

    def test_unknown_statistic(self, datasets):
        with pytest.raises(ValueError, match="Unknown statistic"):
            MIAnalysis(datasets, "w").estimate("variance", "y")

    def test_ttest_df_capped_by_design(self, datasets):
        analysis = MIAnalysis(datasets, "w")
        pooled = analysis.ttest("y", "group", ("a", "b"))
        assert pooled.df <= len(datasets[0]) - 2
        assert pooled.n_imputations == 3

    def test_requires_datasets(self):
        with pytest.raises(ValueError):
            MIAnalysis([], "w")
