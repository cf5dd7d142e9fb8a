import math

import pytest

from gascacu.calculation.projector import (
    DEFAULT_POWER_COEFFICIENTS, MIN_POWER, calc_power, format_summary, project,
    split_compressor_valves,
)
from gascacu.calculation.solver import StopReason, solve

from conftest import build, inline_fitting_data, make_pipe, make_station, make_user


def _project(data):
    network, graph, fluid = build(data)
    state = solve(graph, fluid, network.boundary())
    return state, project(graph, state)


def test_split_partial_load_shares_remaining_units():
    split = split_compressor_valves(3, 100.0, 0.7, 250.0)
    assert split.solvable
    assert split.open_count == 3
    assert split.degrees == pytest.approx([1.0, 0.75, 0.75])
    assert split.realized_flow == pytest.approx(250.0)
    assert split.wasted_flow == 0.0


def test_split_below_minimum_degree_wastes_flow():
    split = split_compressor_valves(3, 100.0, 0.9, 150.0)
    assert split.open_count == 2
    assert split.degrees == pytest.approx([0.9, 0.9, 0.0])
    assert split.wasted_flow == pytest.approx(30.0)


def test_split_single_unit():
    split = split_compressor_valves(3, 100.0, 0.5, 80.0)
    assert split.open_count == 1
    assert split.degrees == pytest.approx([0.8, 0.0, 0.0])
    assert split.wasted_flow == 0.0


def test_split_falls_back_to_trim_unit():
    split = split_compressor_valves(3, 100.0, 0.96, 290.0)
    assert split.degrees == pytest.approx([1.0, 1.0, 0.96])
    assert split.wasted_flow == pytest.approx(6.0)


def test_split_over_capacity_is_unsolvable():
    split = split_compressor_valves(3, 100.0, 0.7, 350.0)
    assert not split.solvable
    assert split.open_count == 4
    assert split.degrees == [0.0, 0.0, 0.0]


def test_split_zero_target():
    split = split_compressor_valves(2, 100.0, 0.7, 0.0)
    assert split.open_count == 0
    assert split.realized_flow == 0.0


def test_power_model():
    c = DEFAULT_POWER_COEFFICIENTS["AS-1"]
    assert calc_power(c, 700000.0, 10.0) == pytest.approx(51.7 * 7 + 5.5833 * 10 - 312.37)
    assert calc_power(c, 700000.0, 0.0) == 0.0
    assert calc_power(DEFAULT_POWER_COEFFICIENTS["AS-3"], 200000.0, 1.0) == MIN_POWER


def test_single_pipe_results(single_pipe_data):
    state, results = _project(single_pipe_data)
    assert results.feasible
    station = results.station("AS-1")
    assert station.pressure == pytest.approx(700000.0)
    assert station.flow == pytest.approx(10.0)
    assert station.open_count == 1
    assert station.compressors[0].degree == pytest.approx(0.5)
    assert station.total_power == pytest.approx(51.7 * 7 + 5.5833 * 10 - 312.37, rel=1e-6)
    assert results.total_power == pytest.approx(station.total_power)

    pipe = results.pipe("P1")
    assert pipe.pressure_from == pytest.approx(700000.0)
    assert pipe.drop == pytest.approx(700000.0 - results.users[0].pressure)
    assert 0.0 < pipe.efficiency < 1.0


def test_efficiencies_bounded(tee_data):
    _, results = _project(tee_data)
    assert 0.0 < results.system_efficiency <= 1.0
    assert 0.0 < results.total_efficiency <= results.system_efficiency
    for pipe in results.pipes:
        assert 0.0 <= pipe.efficiency <= 1.0


def test_wasted_flow_lowers_total_efficiency(single_pipe_data):
    # 单台最低开度 0.8，取气 10 m³/min 时浪费 6 m³/min
    single_pipe_data["stations"][0]["compressors"] = [{"index": 1, "max_flow": 20.0, "min_degree": 0.8}]
    _, results = _project(single_pipe_data)
    station = results.station("AS-1")
    assert station.wasted_flow == pytest.approx(6.0)
    assert results.total_efficiency < results.system_efficiency


def test_station_power_override(single_pipe_data):
    single_pipe_data["stations"][0]["power_coefficients"] = [0.0, 2.0, 0.0]
    _, results = _project(single_pipe_data)
    assert results.station("AS-1").total_power == pytest.approx(20.0)


def test_tee_and_fitting_results(tee_data):
    _, results = _project(tee_data)
    tee = results.tees[0]
    assert tee.flow_a == pytest.approx(tee.flow_b + tee.flow_c)

    data = inline_fitting_data("valves", {"id": "V1", "flow_direction": 1, "diameter": 0.1})
    _, results = _project(data)
    fitting = results.fittings[0]
    assert fitting.kind == "valve"
    assert fitting.flow == pytest.approx(10.0)
    assert results.users[0].pressure < fitting.pressure < 700000.0


def test_format_summary_lists_components(tee_data):
    _, results = _project(tee_data)
    text = format_summary(results)
    for name in ("AS-1", "U1", "U2", "P1", "P2", "P3"):
        assert name in text


def test_singular_state_projects_without_error(single_pipe_data):
    single_pipe_data["tees"] = [{"id": "T9", "junction_a": "P1", "junction_b": "P1", "junction_c": "P1"}]
    state, results = _project(single_pipe_data)
    assert state.stop_reason is StopReason.SINGULAR
    assert not results.feasible
    station = results.station("AS-1")
    assert station.open_count == 0
    assert station.total_power == 0.0
    assert results.total_power == 0.0
    assert results.system_efficiency == 0.0
    assert results.total_efficiency == 0.0
    assert "AS-1" in format_summary(results)


def test_split_nan_target_opens_nothing():
    split = split_compressor_valves(3, 100.0, 0.7, float("nan"))
    assert split.solvable
    assert split.open_count == 0
    assert calc_power(DEFAULT_POWER_COEFFICIENTS["AS-1"], 700000.0, float("nan")) == 0.0


def test_reversed_station_reduces_input_exergy():
    # AS-2 压力低于三通压力，气体倒流进入 AS-2
    data = {
        "fluid_number": 1,
        "temperature": 293.15,
        "stations": [make_station("AS-1", "P1"), make_station("AS-2", "P2", pressure=650000.0)],
        "users": [make_user("U1", "P3")],
        "pipes": [
            make_pipe("P1", "AS-1", "T1"),
            make_pipe("P2", "AS-2", "T1"),
            make_pipe("P3", "T1", "U1"),
        ],
        "tees": [{"id": "T1", "junction_a": "P1", "junction_b": "P2", "junction_c": "P3"}],
    }
    _, results = _project(data)
    reversed_station = results.station("AS-2")
    assert reversed_station.flow < 0
    assert not results.feasible

    e_out = sum(u.flow * math.log(u.pressure / 101325.0) for u in results.users)
    e_in = sum(s.flow * math.log(s.pressure / 101325.0) for s in results.stations)
    assert results.system_efficiency == pytest.approx(min(e_out / e_in, 1.0))
