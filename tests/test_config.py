import pytest

from robust_bisect.config import (
    ENV_ERROR_RATE,
    ENV_MAX_ITERATIONS,
    ENV_TARGET_CONFIDENCE,
    MAX_FOLD_THRESHOLD,
    SearchConfig,
    binary_entropy,
    load_search_config,
)
from robust_bisect.errors import PreconditionError

ENV_NAMES = (ENV_ERROR_RATE, ENV_TARGET_CONFIDENCE, ENV_MAX_ITERATIONS)


@pytest.fixture
def clean_env(monkeypatch):
    # setenv first so monkeypatch restores "unset" even after load_dotenv writes the variable.
    for name in ENV_NAMES:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


@pytest.mark.parametrize(
    "kwargs",
    [
        {"error_rate": -0.1},
        {"error_rate": 0.5},
        {"error_rate": float("nan")},
        {"target_confidence": 0.0},
        {"target_confidence": 1.0},
        {"max_iterations": 0},
        {"fold_threshold": -1.0},
        {"fold_threshold": 1e-3},
        {"fold_threshold": float("nan")},
    ],
)
def test_invalid_config(kwargs):
    with pytest.raises(PreconditionError):
        SearchConfig(**kwargs)


def test_zero_error_rate_is_allowed():
    assert SearchConfig(error_rate=0.0).error_rate == 0.0


def test_fold_threshold_bounds():
    assert SearchConfig(fold_threshold=0.0).fold_threshold == 0.0
    assert SearchConfig(fold_threshold=MAX_FOLD_THRESHOLD).fold_threshold == MAX_FOLD_THRESHOLD
    assert SearchConfig().fold_threshold < MAX_FOLD_THRESHOLD


def test_binary_entropy():
    assert binary_entropy(0.0) == 0.0
    assert binary_entropy(0.5) == pytest.approx(1.0)
    assert binary_entropy(0.1) == pytest.approx(binary_entropy(0.9))


def test_iteration_limit():
    config = SearchConfig(error_rate=0.0, target_confidence=0.99)
    assert config.iteration_limit(8) == 39
    assert config.iteration_limit(1) == config.iteration_limit(2)
    assert SearchConfig(error_rate=0.1).iteration_limit(8) > SearchConfig(error_rate=0.01).iteration_limit(8)
    assert SearchConfig(max_iterations=5).iteration_limit(1000) == 5


def test_with_overrides_skips_none():
    config = SearchConfig(error_rate=0.05)
    assert config.with_overrides(error_rate=None, max_iterations=7) == SearchConfig(
        error_rate=0.05, max_iterations=7
    )


def test_load_defaults(clean_env, tmp_path):
    config = load_search_config(env_path=str(tmp_path / "missing.env"))
    assert config == SearchConfig()


def test_load_from_environment(clean_env, tmp_path):
    clean_env.setenv(ENV_ERROR_RATE, "0.2")
    clean_env.setenv(ENV_MAX_ITERATIONS, "12")
    config = load_search_config(env_path=str(tmp_path / "missing.env"))
    assert config.error_rate == 0.2
    assert config.max_iterations == 12


def test_load_from_dotenv_file(clean_env, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text(f"{ENV_ERROR_RATE}=0.03\n{ENV_TARGET_CONFIDENCE}=0.9\n")
    config = load_search_config(env_path=str(env_file))
    assert config.error_rate == 0.03
    assert config.target_confidence == 0.9


def test_overrides_beat_environment(clean_env, tmp_path):
    clean_env.setenv(ENV_ERROR_RATE, "0.2")
    config = load_search_config(env_path=str(tmp_path / "missing.env"), error_rate=0.05)
    assert config.error_rate == 0.05


def test_invalid_environment_value(clean_env, tmp_path):
    clean_env.setenv(ENV_ERROR_RATE, "often")
    with pytest.raises(PreconditionError):
        load_search_config(env_path=str(tmp_path / "missing.env"))
