import pathlib
import sys

import pytest

pytest.importorskip("yaml")

_PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
_SRC_ROOT = _PROJECT_ROOT / "src"

if str(_SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(_SRC_ROOT))

from configuration import AppConfig, ControllerConfig, PlannerConfig


def test_defaults_without_file(tmp_path):
    config = AppConfig.from_file(tmp_path / "missing.yml")
    assert config.planner.path_provider is None
    assert config.controller.horizon == 10
    assert config.controller.solver.backend == "ipopt"
    assert len(config.mission.waypoints) == 9


def test_from_file_overrides_sections(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(
        "\n".join(
            [
                "planner:",
                "  path_provider: hermite",
                "  xy_goal_tolerance: 0.25",
                "  search_bound: {width: 4.0}",
                "controller:",
                "  horizon: 6",
                "  max_jerk: 3.0",
                "  max_steering_rate: null",
                "  weights: {cross_track: 7.5}",
                "  solver: {backend: SLSQP, warm_start: false}",
                "environment:",
                "  obstacles:",
                "    - {x: 1.0, y: 2.0, radius: 0.4}",
                "runtime: {plan_every: 0}",
                "mission:",
                "  frame_id: map",
                "  waypoints: [[0, 0], [1, 0, 0.5]]",
            ]
        ),
        encoding="utf-8",
    )

    config = AppConfig.from_file(path)

    assert config.planner.path_provider == "hermite"
    assert config.planner.xy_goal_tolerance == pytest.approx(0.25)
    assert config.planner.search_bound.width == pytest.approx(4.0)
    assert config.planner.search_bound.height == pytest.approx(6.0)
    assert config.controller.horizon == 6
    assert config.controller.max_jerk == pytest.approx(3.0)
    assert config.controller.max_steering_rate is None
    assert config.controller.weights.cross_track == pytest.approx(7.5)
    assert config.controller.weights.heading == pytest.approx(10.0)
    assert config.controller.solver.backend == "slsqp"
    assert config.controller.solver.warm_start is False
    assert config.environment.obstacles[0].radius == pytest.approx(0.4)
    assert config.runtime.plan_every == 1
    assert config.mission.waypoints == [(0.0, 0.0), (1.0, 0.0, 0.5)]


def test_non_mapping_file_is_rejected(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        AppConfig.from_file(path)


def test_blank_provider_handle_is_treated_as_missing():
    assert PlannerConfig.from_mapping({"path_provider": "  "}).path_provider is None


def test_environment_kwargs_match_simulator_signature():
    kwargs = AppConfig().environment.to_kwargs()
    assert kwargs["acceleration_limits"] == (-2.0, 1.5)
    assert kwargs["timestep"] == pytest.approx(0.05)


def test_controller_period_from_rate():
    assert ControllerConfig(rate_hz=20.0).period == pytest.approx(0.05)
    assert ControllerConfig(rate_hz=0.0, step_duration=0.2).period == pytest.approx(0.2)


def test_shipped_config_loads():
    config = AppConfig.from_file(_PROJECT_ROOT / "config.yml")
    assert config.planner.path_provider == "hermite"
    assert config.controller.max_jerk is None
