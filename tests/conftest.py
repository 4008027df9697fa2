"""
Pytest configuration and shared fixtures.

Provides small hand-built partitions with known answers and a simulated
multi-protein experiment for end-to-end tests.
"""

import numpy as np
import pandas as pd
import pytest


def simulate_experiment(
    n_proteins: int = 5,
    n_features: int = 3,
    runs_per_condition: int = 3,
    effect_proteins: tuple = ("P1", "P2"),
    effect: float = 3.0,
    noise: float = 0.1,
    run_noise: float = 0.2,
    seed: int = 7,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Generate a long-format feature-level experiment with known effects.

    Args:
        n_proteins: Number of proteins (P1, P2, ...)
        n_features: Features (peptides) per protein
        runs_per_condition: Runs in each of "Case" and "Control"
        effect_proteins: Proteins shifted up by ``effect`` in Case runs
        effect: True log2 difference Case - Control for effect proteins
        noise: Observation-level noise SD
        run_noise: Run-level (biological) noise SD
        seed: Random seed for reproducibility

    Returns:
        (observations, covariates) where observations has columns
        protein/run/feature/log2_intensity and covariates has run/subject/condition.
    """
    rng = np.random.default_rng(seed)
    n_runs = 2 * runs_per_condition
    runs = [f"R{i + 1}" for i in range(n_runs)]
    conditions = ["Case"] * runs_per_condition + ["Control"] * runs_per_condition

    covariates = pd.DataFrame({
        'run': runs,
        'subject': [f"S{i + 1:02d}" for i in range(n_runs)],
        'condition': conditions,
    })

    rows = []
    for p in range(n_proteins):
        protein = f"P{p + 1}"
        base = rng.uniform(18, 24)
        feature_effects = rng.normal(0, 1, n_features)
        run_effects = rng.normal(0, run_noise, n_runs)
        for r, (run, condition) in enumerate(zip(runs, conditions)):
            shift = effect if (protein in effect_proteins and condition == "Case") else 0.0
            for f in range(n_features):
                rows.append({
                    'protein': protein,
                    'run': run,
                    'feature': f"F{f + 1}",
                    'log2_intensity': base + feature_effects[f] + run_effects[r] + shift
                    + rng.normal(0, noise),
                })

    return pd.DataFrame(rows), covariates


@pytest.fixture
def two_by_two_partition():
    """Entity P1: 2 runs x 2 features with intensities 10, 12, 20, 24."""
    return pd.DataFrame({
        'protein': ["P1"] * 4,
        'run': ["R1", "R1", "R2", "R2"],
        'feature': ["F1", "F2", "F1", "F2"],
        'log2_intensity': np.log2([10.0, 12.0, 20.0, 24.0]),
    })


@pytest.fixture
def noisy_partition():
    """Unbalanced 3 runs x 3 features with one missing cell and noise."""
    rng = np.random.default_rng(11)
    rows = []
    for run, run_shift in [("R1", 0.0), ("R2", 0.8), ("R3", -0.5)]:
        for feature, feature_shift in [("F1", 0.0), ("F2", 1.5), ("F3", -0.7)]:
            if run == "R3" and feature == "F2":
                continue
            for _ in range(2):
                rows.append({
                    'protein': "PX",
                    'run': run,
                    'feature': feature,
                    'log2_intensity': 20.0 + run_shift + feature_shift + rng.normal(0, 0.2),
                })
    return pd.DataFrame(rows)


@pytest.fixture
def experiment():
    """Simulated experiment: (observations, covariates)."""
    return simulate_experiment()


@pytest.fixture
def make_experiment():
    """Factory fixture for experiments with non-default settings."""
    return simulate_experiment
