# Statwise - Pytest Configuration
# Shared fixtures: synthetic datasets as row records and a shortcut for running a test id

import numpy as np
import pytest

from core.statistician_engine import calculate_statistics


def _records(**columns):
    names = list(columns)
    length = len(columns[names[0]])
    return [{name: columns[name][i] for name in names} for i in range(length)]


@pytest.fixture
def records():
    """Builds row records from equal-length columns."""
    return _records


@pytest.fixture
def analyse():
    """Runs a test id through the public engine entry point."""
    def _analyse(test_type, rows, dv, iv=None, grp=None, allow_pro=True, **options):
        return calculate_statistics(
            test_type,
            dependent_variables=dv,
            independent_variables=iv,
            grouping_variable=grp,
            data=rows,
            options=options or None,
            allow_pro=allow_pro,
        )
    return _analyse


# =============================================================================
# Datasets
# =============================================================================

@pytest.fixture
def two_small_groups():
    """[1..5] in group A against [6..10] in group B."""
    return _records(score=list(range(1, 11)), group=["A"] * 5 + ["B"] * 5)


@pytest.fixture(scope="session")
def survey():
    """90 respondents in three groups with related scale, paired and categorical columns."""
    rng = np.random.default_rng(42)
    n_per = 30
    group = ["A"] * n_per + ["B"] * n_per + ["C"] * n_per
    score = np.concatenate([
        rng.normal(50, 8, n_per),
        rng.normal(55, 8, n_per),
        rng.normal(62, 8, n_per),
    ])
    x = rng.normal(10, 2, 3 * n_per)
    y = 3 + 0.8 * x + rng.normal(0, 1, 3 * n_per)
    z = rng.normal(0, 1, 3 * n_per)
    pre = rng.normal(20, 4, 3 * n_per)
    post = pre + 2 + rng.normal(0, 2, 3 * n_per)
    follow = pre + 4 + rng.normal(0, 2, 3 * n_per)
    gender = ["F", "M"] * (3 * n_per // 2)
    smoker = ["yes" if v > 55 else "no" for v in score]
    return _records(
        group=group,
        score=[float(v) for v in score],
        x=[float(v) for v in x],
        y=[float(v) for v in y],
        z=[float(v) for v in z],
        pre=[float(v) for v in pre],
        post=[float(v) for v in post],
        follow=[float(v) for v in follow],
        gender=gender,
        smoker=smoker,
    )


@pytest.fixture(scope="session")
def parallel_items():
    """Three items with population inter-item correlation 0.8 (standardized alpha ≈ 0.923)."""
    rng = np.random.default_rng(42)
    n = 2000
    latent = rng.normal(0, 1, n)
    columns = {
        f"item{i}": np.sqrt(0.8) * latent + np.sqrt(0.2) * rng.normal(0, 1, n)
        for i in range(1, 4)
    }
    return _records(**{k: [float(v) for v in col] for k, col in columns.items()})


@pytest.fixture(scope="session")
def two_factor_items():
    """Six items: a1-a3 load on one latent factor, b1-b3 on another."""
    rng = np.random.default_rng(7)
    n = 300
    f1 = rng.normal(0, 1, n)
    f2 = rng.normal(0, 1, n)
    columns = {}
    for i in range(1, 4):
        columns[f"a{i}"] = 0.8 * f1 + 0.45 * rng.normal(0, 1, n)
        columns[f"b{i}"] = 0.8 * f2 + 0.45 * rng.normal(0, 1, n)
    return _records(**{k: [float(v) for v in col] for k, col in columns.items()})
