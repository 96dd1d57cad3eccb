import json
from pathlib import Path

import pytest

from tripdist import config
from tripdist.exceptions import ConfigurationError


def test_default_distribution_config():
    cfg = config.load_distribution_config(None)
    assert cfg.balancing.tolerance == pytest.approx(1e-3)
    assert cfg.balancing.max_iterations > 0
    assert cfg.calibration.calibration_tolerance > 0
    assert cfg.sectors == {}
    assert cfg.data.outputs == Path("data") / "outputs"


def test_yaml_config_with_sectors(tmp_path: Path):
    path = tmp_path / "distribution.yaml"
    path.write_text(
        "\n".join(
            [
                "data:",
                "  root: run",
                "balancing:",
                "  tolerance: 0.0001",
                "  max_iterations: 250",
                "sectors:",
                "  goods:",
                "    production: goods_o",
                "    attraction: goods_d",
            ]
        ),
        encoding="utf-8",
    )
    cfg = config.load_distribution_config(path)
    assert cfg.balancing.tolerance == pytest.approx(1e-4)
    assert cfg.balancing.max_iterations == 250
    assert cfg.sectors["goods"].production == "goods_o"
    assert cfg.data.inputs == Path("run") / "inputs"


def test_invalid_config_file_raises_configuration_error(tmp_path: Path):
    path = tmp_path / "distribution.json"
    path.write_text(json.dumps({"balancing": {"tolerance": 0}}), encoding="utf-8")
    with pytest.raises(ConfigurationError):
        config.load_distribution_config(path)


def test_unsupported_config_suffix(tmp_path: Path):
    path = tmp_path / "distribution.toml"
    path.write_text("", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        config.load_distribution_config(path)


def test_calibration_config_derives_balancing_settings():
    cfg = config.CalibrationConfig(balancing_tolerance=1e-5, balancing_max_iterations=30, flow_col="trips")
    balancing = cfg.balancing()
    assert balancing.tolerance == pytest.approx(1e-5)
    assert balancing.max_iterations == 30
    assert balancing.flow_col == "trips"
    assert balancing.friction_origin_col == cfg.friction_origin_col
