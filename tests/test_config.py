"""Unit tests for configuration dataclasses and YAML loading."""

import numpy as np
import pytest

from indoornav.config import (
    CompassConfig,
    IndoorNavConfig,
    MatcherConfig,
    StrategyConfig,
    config_from_dict,
    load_config,
)


def test_defaults():
    config = IndoorNavConfig()
    assert config.compass.rate_ms == 30
    assert config.compass.filter_coefficient == 0.98
    assert config.strategy.step_length == 0.5
    assert config.strategy.step_limit == 3
    assert config.strategy.min_sources == 1
    assert config.strategy.gate_confidence is None
    assert config.matchers == ()


def test_strategy_matrices():
    config = StrategyConfig()
    np.testing.assert_allclose(
        config.initial_covariance(),
        np.diag([25.0, 25.0, np.deg2rad(10.0) ** 2, 0.25]),
    )
    np.testing.assert_allclose(
        config.process_noise(),
        np.diag([1.0, 1.0, np.deg2rad(3.0) ** 2, 0.25]),
    )


@pytest.mark.parametrize(
    "factory",
    [
        lambda: CompassConfig(rate_ms=0),
        lambda: CompassConfig(filter_coefficient=1.01),
        lambda: StrategyConfig(step_length=-0.5),
        lambda: StrategyConfig(init_position_std=float("nan")),
        lambda: StrategyConfig(step_limit=-1),
        lambda: StrategyConfig(min_sources=0),
        lambda: StrategyConfig(gate_confidence=1.0),
        lambda: MatcherConfig(source="", path="map.tsv"),
        lambda: MatcherConfig(source="magnetic", path="map.tsv", k=0),
        lambda: MatcherConfig(source="magnetic", path="map.tsv", sigma=0.0),
    ],
)
def test_invalid_values_rejected(factory):
    with pytest.raises(ValueError):
        factory()


def test_config_from_dict_partial():
    config = config_from_dict({"strategy": {"step_length": 0.7}})
    assert config.strategy.step_length == 0.7
    assert config.strategy.step_limit == 3
    assert config.compass == CompassConfig()


def test_config_from_dict_none():
    assert config_from_dict(None) == IndoorNavConfig()


def test_unknown_keys_rejected():
    with pytest.raises(ValueError, match="Unknown keys"):
        config_from_dict({"compass": {"rate": 10}})
    with pytest.raises(ValueError, match="Unknown configuration sections"):
        config_from_dict({"ui": {}})


def test_matcher_missing_required_key():
    with pytest.raises(ValueError, match="matchers\\[0\\]"):
        config_from_dict({"matchers": [{"source": "magnetic"}]})


def test_duplicate_matcher_sources():
    with pytest.raises(ValueError, match="Duplicate"):
        config_from_dict(
            {
                "matchers": [
                    {"source": "wifi", "path": "a.tsv"},
                    {"source": "wifi", "path": "b.tsv"},
                ]
            }
        )


def test_load_config(tmp_path):
    path = tmp_path / "indoornav.yaml"
    path.write_text(
        "compass:\n"
        "  rate_ms: 20\n"
        "strategy:\n"
        "  step_length: 0.6\n"
        "  gate_confidence: 0.99\n"
        "matchers:\n"
        "  - source: magnetic\n"
        "    path: maps/floor0.tsv\n"
        "    n_features: 3\n"
        "    threshold: 25.0\n"
        "    k: 4\n"
        "    sigma: 2.0\n",
        encoding="utf-8",
    )
    config = load_config(path)
    assert config.compass.rate_ms == 20
    assert config.strategy.step_length == 0.6
    assert config.strategy.gate_confidence == 0.99

    (matcher,) = config.matchers
    assert matcher.source == "magnetic"
    assert matcher.k == 4
    assert matcher.threshold == 25.0
    # Relative map paths are resolved next to the configuration file
    assert matcher.path == str(tmp_path / "maps" / "floor0.tsv")


def test_load_config_invalid_yaml(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("compass: [unclosed\n", encoding="utf-8")
    with pytest.raises(ValueError, match="invalid YAML"):
        load_config(path)


def test_load_config_missing_file(tmp_path):
    with pytest.raises(OSError):
        load_config(tmp_path / "missing.yaml")
