"""
Tests for analysis configuration loading and merging.
"""

import json

import pytest
import yaml

from twostage.config import AnalysisConfig, load_config, merge_config


class TestAnalysisConfig:

    def test_defaults(self):
        config = AnalysisConfig()
        assert config.nuisance_covariates == ["feature"]
        assert config.correction_method == "BH"
        assert not config.equal_var

    def test_normalizes_sequences(self):
        config = AnalysisConfig(nuisance_covariates="peptide", comparison_levels=["A", "B"])
        assert config.nuisance_covariates == ["peptide"]
        assert config.comparison_levels == ("A", "B")

    @pytest.mark.parametrize("kwargs", [
        {'group_covariate': "feature"},
        {'confidence_level': 1.0},
        {'fdr_threshold': 0.0},
        {'alternative': "both"},
        {'correction_method': "qvalue"},
        {'comparison_levels': ("A", "B", "C")},
        {'min_per_group': 0},
        {'n_jobs': 0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            AnalysisConfig(**kwargs)

    def test_unknown_keys(self):
        with pytest.raises(ValueError, match="fdr"):
            AnalysisConfig.from_dict({'fdr': 0.1})

    def test_dict_round_trip(self):
        config = AnalysisConfig(comparison_levels=("ALS", "Control"), n_jobs=4)
        values = config.to_dict()
        assert values['comparison_levels'] == ["ALS", "Control"]
        assert AnalysisConfig.from_dict(values) == config


class TestLoadConfig:

    def test_yaml(self, tmp_path):
        path = tmp_path / "analysis.yaml"
        path.write_text(yaml.safe_dump({'comparison_column': "disease", 'fdr_threshold': 0.1}))
        assert load_config(path) == {'comparison_column': "disease", 'fdr_threshold': 0.1}

    def test_json(self, tmp_path):
        path = tmp_path / "analysis.json"
        path.write_text(json.dumps({'n_jobs': 2}))
        assert load_config(path) == {'n_jobs': 2}

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_config(path) == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "analysis.toml"
        path.write_text("n_jobs = 2")
        with pytest.raises(ValueError, match="Unsupported"):
            load_config(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="dictionary"):
            load_config(path)


class TestMergeConfig:

    def test_override_wins(self):
        config = merge_config({'fdr_threshold': 0.1, 'n_jobs': 2}, {'fdr_threshold': 0.01})
        assert config.fdr_threshold == 0.01
        assert config.n_jobs == 2

    def test_none_does_not_override(self):
        config = merge_config({'comparison_column': "disease"}, {'comparison_column': None})
        assert config.comparison_column == "disease"

    def test_defaults_fill_the_rest(self):
        config = merge_config({}, {})
        assert config == AnalysisConfig()
