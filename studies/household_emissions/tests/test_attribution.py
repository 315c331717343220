"""
Tests for household emission attribution and the conservation check.
"""

import numpy as np
import pandas as pd
import pytest

from studies.household_emissions.src.attribution import (
    ConservationError,
    attribute_emissions,
    check_conservation,
    footprint_column,
    household_category_emissions,
    household_footprints,
    select_codes,
    weighted_annual_total,
)
from studies.household_emissions.src.multipliers import MultiplierCalculator
from tests.fixtures.household_dgp import (
    EMISSIONS_KT,
    make_bridge,
    make_households,
    make_toy_scenario,
)


def _fit(households, bridge, emissions):
    return MultiplierCalculator(weeks_per_year=52, unit_scale=1000.0).fit(
        households, bridge, emissions
    ).intensities


class TestToyAttribution:
    """End-to-end toy scenario: intensity 10, category total 15600."""

    @pytest.fixture
    def toy(self):
        data = make_toy_scenario()
        data["intensities"] = _fit(data["households"], data["bridge"], data["category_emissions"])
        return data

    def test_per_household_emissions(self, toy):
        emissions = attribute_emissions(toy["households"], toy["bridge"], toy["intensities"])
        assert emissions.columns.tolist() == ["case", "a", "b"]
        assert emissions["a"].tolist() == pytest.approx([100.0, 0.0])
        assert emissions["b"].tolist() == pytest.approx([0.0, 200.0])

    def test_annualised_sum_equals_category_total(self, toy):
        emissions = attribute_emissions(toy["households"], toy["bridge"], toy["intensities"])
        per_household = emissions[["a", "b"]].sum(axis=1)
        total = weighted_annual_total(per_household, toy["households"]["weight"], 52)
        assert total == pytest.approx(15600.0)

    def test_conservation_passes(self, toy):
        emissions = attribute_emissions(toy["households"], toy["bridge"], toy["intensities"])
        report = check_conservation(
            emissions, toy["households"], toy["bridge"], toy["intensities"], rtol=1e-6, weeks_per_year=52
        )
        assert report.passed
        assert report.bottom_up == pytest.approx(15600.0)
        assert report.top_down == pytest.approx(15600.0)
        assert report.validate_or_fail() is report


class TestConservation:
    """Conservation on synthetic survey data."""

    @pytest.fixture
    def setup(self):
        households = make_households(n=100)
        bridge = make_bridge()
        bridge.loc[bridge["code"] == "c94", "use"] = False
        emissions = pd.DataFrame(list(EMISSIONS_KT.items()), columns=["category", "emissions_kt"])
        return households, bridge, _fit(households, bridge, emissions)

    def test_bottom_up_equals_top_down(self, setup):
        households, bridge, intensities = setup
        emissions = attribute_emissions(households, bridge, intensities)
        report = check_conservation(emissions, households, bridge, intensities, rtol=1e-6, weeks_per_year=52)

        assert report.relative_error < 1e-9
        assert report.passed
        assert (report.by_category["relative_error"] < 1e-9).all()
        assert "c94" not in emissions.columns

    def test_tampered_emissions_fail(self, setup):
        households, bridge, intensities = setup
        emissions = attribute_emissions(households, bridge, intensities)
        emissions["c11"] *= 1.01

        report = check_conservation(emissions, households, bridge, intensities, rtol=1e-6, weeks_per_year=52)
        assert not report.passed
        with pytest.raises(ConservationError):
            report.validate_or_fail()

    def test_unknown_case(self, setup):
        households, bridge, intensities = setup
        emissions = attribute_emissions(households, bridge, intensities)
        emissions.loc[0, "case"] = -1
        with pytest.raises(ValueError, match="missing from the household table"):
            check_conservation(emissions, households, bridge, intensities)

    def test_missing_spend_is_zero_emissions(self, setup):
        households, bridge, intensities = setup
        households = households.copy()
        households.loc[[0, 3], "c11"] = np.nan
        emissions = attribute_emissions(households, bridge, intensities)
        missing = households["c11"].isna().to_numpy()
        assert (emissions.loc[missing, "c11"] == 0.0).all()
        assert not emissions.isna().any().any()


class TestCategoryQueries:
    """Test exact and prefix roll-ups over attributed emissions."""

    @pytest.fixture
    def data(self):
        bridge = pd.DataFrame({
            "code": ["a", "b", "c", "d", "e"],
            "category": ["4", "4.1", "4.5.1", "14.1", "7.2"],
            "use": [True, True, True, True, False],
        })
        emissions = pd.DataFrame({
            "case": [1, 2],
            "a": [1.0, 2.0],
            "b": [10.0, 20.0],
            "c": [100.0, 200.0],
            "d": [1000.0, 2000.0],
        })
        return bridge, emissions

    def test_select_codes(self, data):
        bridge, _ = data
        assert select_codes(bridge, "4", "prefix") == ["a", "b", "c"]
        assert select_codes(bridge, "4", "exact") == ["a"]
        assert select_codes(bridge, "7", "prefix") == []

    def test_prefix_excludes_fourteen(self, data):
        bridge, emissions = data
        values = household_category_emissions(emissions, bridge, "4", "prefix")
        assert values.tolist() == [111.0, 222.0]

    def test_empty_category_is_zero(self, data):
        """Unknown categories and excluded codes give zero, not an error."""
        bridge, emissions = data
        assert household_category_emissions(emissions, bridge, "9").tolist() == [0.0, 0.0]
        assert household_category_emissions(emissions, bridge, "7.2").tolist() == [0.0, 0.0]

    def test_footprints(self, data):
        bridge, emissions = data
        result = household_footprints(emissions, bridge, ["4", "14", "4.5"])
        assert result.columns.tolist() == [
            "case", "total", "emissions_4", "emissions_14", "emissions_4_5"
        ]
        assert result["total"].tolist() == [1111.0, 2222.0]
        assert result["emissions_4_5"].tolist() == [100.0, 200.0]

    def test_footprint_column(self):
        assert footprint_column("4.5.1") == "emissions_4_5_1"
        assert footprint_column(7.0) == "emissions_7"


class TestWeightedAnnualTotal:
    def test_nan_as_zero(self):
        assert weighted_annual_total(np.array([1.0, np.nan]), np.array([2.0, 3.0]), 52) == 104.0
