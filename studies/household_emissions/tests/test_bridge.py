"""
Tests for the code bridge builder and reviewed bridge validation.
"""

import pandas as pd
import pytest

from studies.household_emissions.src.bridge import (
    BridgeBuilder,
    BridgeValidationError,
    accepted_entries,
    apply_overrides,
    code_category_map,
    load_bridge,
    save_bridge,
    summarise_bridge,
    validate_bridge,
)
from tests.fixtures.household_dgp import CATEGORIES, EXPENDITURE_CODES, make_bridge


@pytest.fixture
def categories():
    return pd.DataFrame(CATEGORIES, columns=["category", "label"])


@pytest.fixture
def expenditure_codes():
    return pd.DataFrame([(c, l) for c, l, _ in EXPENDITURE_CODES], columns=["code", "label"])


class TestBridgeBuilder:
    """Test the automated proposal."""

    def test_one_entry_per_code(self, categories, expenditure_codes):
        bridge = BridgeBuilder(categories).build(expenditure_codes)
        assert len(bridge) == len(expenditure_codes)
        assert bridge["code"].tolist() == expenditure_codes["code"].tolist()

    def test_matches_similar_labels(self, categories, expenditure_codes):
        """Labels differing only in case and punctuation match their category."""
        bridge = BridgeBuilder(categories).build(expenditure_codes)
        expected = [k for _, _, k in EXPENDITURE_CODES]
        assert bridge["category"].tolist() == expected

    def test_unmatched_label_still_assigned(self, categories):
        """Codes with no similar or empty labels get a best-effort category."""
        codes = pd.DataFrame({"code": ["x1", "x2"], "label": ["zzzz qqqq", None]})
        bridge = BridgeBuilder(categories).build(codes)
        assert len(bridge) == 2
        assert bridge["category"].isin(categories["category"]).all()

    def test_ties_go_to_first_category(self):
        """Identical category labels: the first listed wins."""
        categories = pd.DataFrame({"category": ["2", "1"], "label": ["Food", "Food"]})
        codes = pd.DataFrame({"code": ["a"], "label": ["Food"]})
        bridge = BridgeBuilder(categories).build(codes)
        assert bridge.loc[0, "category"] == "2"

    def test_documentation_sets_use(self, categories, expenditure_codes):
        documented = ["c11", "c45"]
        bridge = BridgeBuilder(categories, documented).build(expenditure_codes)

        flagged = bridge.set_index("code")
        assert flagged.loc["c11", "use"] and flagged.loc["c45", "use"]
        assert not flagged.loc["c12", "use"]
        assert flagged["needs_review"].sum() == len(bridge) - 2
        assert (flagged["use"] == flagged["documented"]).all()

    def test_empty_input(self, categories):
        bridge = BridgeBuilder(categories).build(pd.DataFrame(columns=["code", "label"]))
        assert bridge.empty

    def test_requires_categories(self):
        with pytest.raises(ValueError):
            BridgeBuilder(pd.DataFrame(columns=["category", "label"]))

    def test_distance_range(self, categories, expenditure_codes):
        matrix = BridgeBuilder(categories).distances(expenditure_codes["label"])
        assert matrix.shape == (len(expenditure_codes), len(categories))
        assert ((matrix >= 0) & (matrix <= 1)).all()


class TestOverrides:
    """Test recorded manual corrections."""

    def test_override_category_and_use(self):
        bridge = make_bridge()
        bridge["needs_review"] = True
        result = apply_overrides(bridge, [{"code": "c94", "category": "9.4.1", "use": False}])
        row = result.set_index("code").loc["c94"]
        assert row["category"] == "9.4.1"
        assert not row["use"]
        assert not row["needs_review"]

    def test_unknown_code(self):
        with pytest.raises(BridgeValidationError):
            apply_overrides(make_bridge(), [{"code": "nope", "use": True}])


class TestValidateBridge:
    """Test reviewed bridge invariants."""

    def test_valid_bridge(self, categories):
        bridge = validate_bridge(make_bridge(), categories)
        assert len(accepted_entries(bridge)) == len(bridge)

    def test_duplicate_accepted_code(self):
        bridge = pd.concat([make_bridge(), make_bridge().iloc[[0]]], ignore_index=True)
        with pytest.raises(BridgeValidationError, match="duplicated"):
            validate_bridge(bridge)

    def test_duplicate_allowed_when_excluded(self):
        """A code may appear twice if only one entry is accepted."""
        extra = make_bridge().iloc[[0]].assign(category="1.2", use=False)
        bridge = pd.concat([make_bridge(), extra], ignore_index=True)
        validated = validate_bridge(bridge)
        assert code_category_map(validated)["c11"] == "1.1"

    def test_unknown_category(self, categories):
        bridge = make_bridge()
        bridge.loc[0, "category"] = "99.9"
        with pytest.raises(BridgeValidationError, match="99.9"):
            validate_bridge(bridge, categories)

    def test_non_boolean_use(self):
        bridge = make_bridge()
        bridge["use"] = "yes"
        with pytest.raises(BridgeValidationError, match="boolean"):
            validate_bridge(bridge)

    def test_excluded_entries_ignored(self):
        bridge = make_bridge()
        bridge.loc[bridge["code"] == "c73", "use"] = False
        assert "c73" not in accepted_entries(bridge)["code"].tolist()
        assert "c73" not in code_category_map(bridge)


class TestBridgeFiles:
    """Test the spreadsheet round trip used for manual review."""

    def test_xlsx_round_trip(self, tmp_path, categories):
        bridge = make_bridge()
        bridge.loc[0, "category"] = "1.1"
        bridge.loc[5, "use"] = False
        path = save_bridge(bridge, tmp_path / "bridge.xlsx")

        loaded = load_bridge(path, categories)
        assert loaded["category"].tolist() == bridge["category"].tolist()
        assert loaded["use"].tolist() == bridge["use"].tolist()

    def test_blank_use_in_spreadsheet(self, tmp_path, categories):
        """A row left blank by the reviewer fails loading."""
        bridge = make_bridge()
        bridge["use"] = bridge["use"].astype(object)
        bridge.loc[2, "use"] = None
        path = save_bridge(bridge, tmp_path / "bridge.xlsx")

        with pytest.raises(BridgeValidationError, match="use"):
            load_bridge(path, categories)

    def test_summary(self, categories, expenditure_codes):
        bridge = BridgeBuilder(categories, ["c11", "c12"]).build(expenditure_codes)
        bridge.loc[bridge["code"] == "c45", "use"] = True
        summary = summarise_bridge(bridge)

        assert summary.n_codes == 6
        assert summary.n_documented == 2
        assert summary.n_accepted == 3
        assert summary.undocumented_accepted == ["c45"]
        assert "Code Bridge" in summary.summary()
