"""
Analysis configuration.

Supports YAML and JSON config files; CLI arguments that were explicitly set
override file values.
"""

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml


@dataclass
class AnalysisConfig:
    """
    Complete configuration for a two-stage analysis.

    Column names describe the long-format observation table; the remaining
    fields control term selection, the second-stage test and correction.
    """
    # Observation table schema
    entity_column: str = "protein"
    response_column: str = "log2_intensity"
    group_covariate: str = "run"
    nuisance_covariates: List[str] = field(default_factory=lambda: ["feature"])
    log2_transform: bool = False

    # Derived summaries
    term_pattern: str = "run"
    strip_prefix: str = "run"
    covariate_key: Optional[str] = None

    # Second stage
    comparison_column: str = "condition"
    comparison_levels: Optional[Tuple[str, str]] = None
    equal_var: bool = False
    confidence_level: float = 0.95
    alternative: str = "two-sided"
    min_per_group: int = 2

    # Correction
    correction_method: str = "BH"
    fdr_threshold: float = 0.05

    # Extra tidy outputs
    keep_observations: bool = False
    keep_model_summaries: bool = False

    # Execution
    n_jobs: int = 1

    def __post_init__(self):
        if isinstance(self.nuisance_covariates, str):
            self.nuisance_covariates = [self.nuisance_covariates]
        else:
            self.nuisance_covariates = list(self.nuisance_covariates)
        if self.comparison_levels is not None:
            self.comparison_levels = tuple(self.comparison_levels)
        self.validate()

    def validate(self) -> None:
        """Raise ValueError for settings that can never produce a valid run."""
        if self.group_covariate in self.nuisance_covariates:
            raise ValueError(
                f"group_covariate '{self.group_covariate}' cannot also be a nuisance covariate"
            )
        if not 0 < self.confidence_level < 1:
            raise ValueError(f"confidence_level must be in (0, 1), got {self.confidence_level}")
        if not 0 < self.fdr_threshold <= 1:
            raise ValueError(f"fdr_threshold must be in (0, 1], got {self.fdr_threshold}")
        if self.alternative not in ("two-sided", "less", "greater"):
            raise ValueError(f"Unknown alternative '{self.alternative}'")
        if self.correction_method not in ("BH", "BY", "bonferroni", "holm"):
            raise ValueError(f"Unknown correction method '{self.correction_method}'")
        if self.comparison_levels is not None and len(self.comparison_levels) != 2:
            raise ValueError(
                f"comparison_levels must name exactly two levels, got {self.comparison_levels}"
            )
        if self.min_per_group < 1:
            raise ValueError(f"min_per_group must be >= 1, got {self.min_per_group}")
        if self.n_jobs == 0:
            raise ValueError("n_jobs must be non-zero (use -1 for all cores)")

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "AnalysisConfig":
        """Build a config from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {unknown}")
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        values = asdict(self)
        if values['comparison_levels'] is not None:
            values['comparison_levels'] = list(values['comparison_levels'])
        return values


_PARSERS = {
    '.yaml': (yaml.safe_load, yaml.YAMLError),
    '.yml': (yaml.safe_load, yaml.YAMLError),
    '.json': (json.load, json.JSONDecodeError),
}


def load_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read analysis settings from a YAML or JSON file.

    Keys are ``AnalysisConfig`` field names; they are not validated here
    (see :func:`merge_config`). An empty file yields an empty mapping.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If the suffix is not .yaml/.yml/.json, the file does not
            parse, or its top level is not a mapping

    Examples:
        >>> load_config(Path("analysis.yaml"))
        {'comparison_column': 'disease', 'comparison_levels': ['ALS', 'Control']}
    """
    config_path = Path(config_path)
    if not config_path.is_file():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()
    if suffix not in _PARSERS:
        raise ValueError(f"Unsupported config format '{suffix}'; expected one of {sorted(_PARSERS)}")
    parse, parse_error = _PARSERS[suffix]

    with open(config_path) as f:
        try:
            values = parse(f)
        except parse_error as e:
            raise ValueError(f"Could not parse {config_path.name}: {e}") from e

    if values is None:
        return {}
    if not isinstance(values, dict):
        raise ValueError(
            f"{config_path.name} must contain a dictionary/mapping of settings, "
            f"got {type(values).__name__}"
        )
    return values


def merge_config(file_values: Dict[str, Any], overrides: Dict[str, Any]) -> AnalysisConfig:
    """
    Combine config-file values with explicitly set CLI overrides.

    Rules:
    - Overrides ALWAYS win when not None
    - Otherwise the file value is used
    - Otherwise the dataclass default applies

    Parameters:
        file_values: Values from :func:`load_config`
        overrides: Values from CLI args; None means "not set"

    Returns:
        Validated AnalysisConfig
    """
    merged = dict(file_values)
    for key, value in overrides.items():
        if value is not None:
            merged[key] = value
    return AnalysisConfig.from_dict(merged)
