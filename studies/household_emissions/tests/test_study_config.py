"""
Tests for the YAML study configuration.
"""

import pytest
import yaml

from studies.household_emissions.src.study_config import ReportMeasure, StudyConfig
from tests.fixtures.household_dgp import study_config_dict


class TestStudyConfig:
    """Test parsing and validation."""

    def test_from_dict(self):
        config = StudyConfig.from_dict(study_config_dict())

        assert config.columns.case == "case"
        assert config.footprint_categories == ["1", "7"]
        assert [m.name for m in config.report.measures][:2] == ["footprint", "intensity"]
        assert all(isinstance(m, ReportMeasure) for m in config.report.measures)
        assert config.report.comparisons == [["upper", "lower"]]

    def test_defaults(self):
        config = StudyConfig.from_dict(None)
        assert config.inputs.households == "households.csv"
        assert config.report.by == "social_class"
        assert config.report.measures == []

    def test_unknown_top_level_key(self):
        with pytest.raises(ValueError, match="Unknown keys in 'study'"):
            StudyConfig.from_dict({"colums": {}})

    def test_unknown_nested_key(self):
        with pytest.raises(ValueError, match="columns"):
            StudyConfig.from_dict({"columns": {"wieght": "w"}})

    def test_ratio_requires_denominator(self):
        data = {"report": {"measures": [{"name": "r", "expression": "total", "statistic": "ratio"}]}}
        with pytest.raises(ValueError, match="denominator"):
            StudyConfig.from_dict(data)

    def test_unknown_statistic(self):
        with pytest.raises(ValueError, match="unknown statistic"):
            ReportMeasure(name="x", expression="total", statistic="mode")

    def test_comparison_pairs(self):
        data = {"report": {"comparisons": [["upper", "lower", "old middle"]]}}
        with pytest.raises(ValueError, match="exactly two"):
            StudyConfig.from_dict(data)

    def test_plot_must_name_measure(self):
        data = {"report": {"measures": [{"name": "a", "expression": "total"}], "plots": ["b"]}}
        with pytest.raises(ValueError, match="unknown measures"):
            StudyConfig.from_dict(data)

    def test_override_keys(self):
        with pytest.raises(ValueError, match="bridge_overrides"):
            StudyConfig.from_dict({"bridge_overrides": [{"code": "c11", "weight": 2}]})
        with pytest.raises(ValueError, match="needs a 'code'"):
            StudyConfig.from_dict({"bridge_overrides": [{"use": False}]})

    def test_estimator_kwargs(self):
        assert ReportMeasure("m", "total").estimator_kwargs == {}
        assert ReportMeasure("q", "total", statistic="quantile", q=0.9).estimator_kwargs == {"q": 0.9}
        ratio = ReportMeasure("r", "total", statistic="ratio", denominator="expenditure")
        assert ratio.estimator_kwargs == {"denominator": "expenditure"}
        assert ratio.display_name == "r"


class TestLoad:
    """Test loading from disk."""

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "study.yaml"
        path.write_text(yaml.safe_dump(study_config_dict()))

        config = StudyConfig.load(path)
        assert config.footprint_categories == ["1", "7"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            StudyConfig.load(tmp_path / "absent.yaml")

    def test_imputation_spec(self):
        spec = StudyConfig.from_dict(study_config_dict()).imputation_spec()
        assert spec.target == "education"
        assert spec.full_time_programs == [1, 2, 3]
        assert set(spec.categorical) <= set(spec.predictors)

    def test_repository_config(self):
        """The shipped study configuration parses."""
        config = StudyConfig.load()
        assert config.report.measures
        assert set(config.report.plots) <= {m.name for m in config.report.measures}
