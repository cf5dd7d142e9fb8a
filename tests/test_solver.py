import numpy as np
import pytest

from gascacu.calculation.config import SolverOptions
from gascacu.calculation.models import Boundary, DataError
from gascacu.calculation.solver import HydraulicSolver, StopReason, solve

from conftest import build, inline_fitting_data, loop_data, make_pipe


def _solve(data, boundary=None, options=None):
    network, graph, fluid = build(data)
    state = solve(graph, fluid, boundary or network.boundary(), options)
    return network, graph, fluid, state


def test_single_pipe_converges_to_withdrawal(single_pipe_data):
    _, graph, fluid, state = _solve(single_pipe_data)
    assert state.stop_reason is StopReason.CONVERGED
    assert state.feasible
    assert state.iterations <= 25
    assert state.flows[0] == pytest.approx(10.0, rel=1e-9)
    assert state.mass_flows[0] == pytest.approx(fluid.rho * 10.0 / 60.0, rel=1e-9)

    # 压降与阻力系数满足 dP = R * Q²
    station = graph.node_map["AS-1"]
    user = graph.node_map["U1"]
    assert state.pressures[station] == pytest.approx(700000.0)
    drop = state.pressures[station] - state.pressures[user]
    assert drop > 0
    assert drop == pytest.approx(state.resistances[0] * state.mass_flows[0] ** 2, rel=1e-2)


def test_mass_conservation_at_tee(tee_data):
    _, graph, _, state = _solve(tee_data)
    assert state.stop_reason is StopReason.CONVERGED
    p1, p2, p3 = (graph.pipe_map[name] for name in ("P1", "P2", "P3"))
    assert state.flows[p1] == pytest.approx(state.flows[p2] + state.flows[p3], rel=1e-9)
    assert state.flows[p2] == pytest.approx(6.0, rel=1e-9)
    assert state.flows[p3] == pytest.approx(4.0, rel=1e-9)


def test_pressures_fall_along_flow(tee_data):
    _, graph, _, state = _solve(tee_data)
    p = state.pressures
    nodes = graph.node_map
    assert p[nodes["AS-1"]] > p[nodes["T1"]] > p[nodes["U1"]]
    assert p[nodes["T1"]] > p[nodes["U2"]]


def test_solve_is_deterministic(tee_data):
    network, graph, fluid = build(tee_data)
    solver = HydraulicSolver(graph, fluid)
    first = solver.solve(network.boundary())
    second = solver.solve(network.boundary())
    assert np.array_equal(first.pressures, second.pressures)
    assert np.array_equal(first.flows, second.flows)
    assert first.iterations == second.iterations


def test_longer_pipe_gives_larger_drop(single_pipe_data):
    _, graph, _, short = _solve(single_pipe_data)
    single_pipe_data["pipes"] = [make_pipe("P1", "AS-1", "U1", length=300.0)]
    _, _, _, long = _solve(single_pipe_data)
    user = graph.node_map["U1"]
    assert long.pressures[user] < short.pressures[user]


def test_source_on_second_endpoint(single_pipe_data):
    # 约定流向与实际流向相反：管道流量为负，但空压站仍在输出
    single_pipe_data["pipes"] = [make_pipe("P1", "U1", "AS-1")]
    _, _, _, state = _solve(single_pipe_data)
    assert state.flows[0] == pytest.approx(-10.0, rel=1e-9)
    assert state.feasible


def test_unreachable_minimum_pressure_is_infeasible(single_pipe_data):
    single_pipe_data["users"][0]["min_pressure"] = 699999.0
    _, _, _, state = _solve(single_pipe_data)
    assert state.stop_reason is StopReason.CONVERGED
    assert not state.feasible


def test_degenerate_flow_stops_early(single_pipe_data):
    single_pipe_data["users"][0]["flow"] = 0.1
    _, _, _, state = _solve(single_pipe_data)
    assert state.stop_reason is StopReason.DEGENERATE_FLOW
    assert state.iterations == 1


def test_iteration_cap(single_pipe_data):
    _, _, _, state = _solve(single_pipe_data, options=SolverOptions(max_iterations=3))
    assert state.stop_reason is StopReason.MAX_ITERATIONS
    # 首轮求解之后再迭代 max_iterations 次
    assert state.iterations == 4


def test_isolated_node_is_singular(single_pipe_data):
    single_pipe_data["tees"] = [{"id": "T9", "junction_a": "P1", "junction_b": "P1", "junction_c": "P1"}]
    _, _, _, state = _solve(single_pipe_data)
    assert state.stop_reason is StopReason.SINGULAR
    assert not state.feasible


def test_limit_flow_valve_holds_setpoint_in_loop():
    data = loop_data("limit_flow_valves", {"id": "LF1", "flow_direction": 1, "set_flow": 3.0})
    _, graph, _, state = _solve(data)
    assert state.stop_reason is StopReason.CONVERGED
    assert state.feasible
    assert state.flows[graph.pipe_map["P1"]] == pytest.approx(3.0, abs=0.01)
    assert state.flows[graph.pipe_map["P3"]] == pytest.approx(7.0, abs=0.01)


def test_mass_conservation_in_loop():
    data = loop_data("valves", {"id": "V1", "flow_direction": 1, "diameter": 0.1})
    network, graph, _, state = _solve(data)
    k = graph.free_count
    expected = np.zeros(k)
    expected[graph.user_nodes[0]] = network.users[0].flow
    balance = graph.incidence[:k] @ state.flows
    assert balance == pytest.approx(expected, abs=1e-9)
    # 两条并联支路都有气体通过
    assert state.flows[graph.pipe_map["P1"]] > 0
    assert state.flows[graph.pipe_map["P3"]] > 0


def test_limit_pressure_valve_caps_downstream_pressure():
    data = inline_fitting_data(
        "limit_pressure_valves", {"id": "LP1", "flow_direction": 1, "set_pressure": 600000.0},
    )
    _, graph, _, state = _solve(data)
    assert state.stop_reason is StopReason.CONVERGED
    assert state.pressures[graph.node_map["LP1"]] == pytest.approx(600000.0, abs=1000.0)
    assert state.pressures[graph.node_map["U1"]] < 600000.0


def test_limit_drop_valve_adds_setpoint_drop():
    data = inline_fitting_data(
        "limit_drop_valves", {"id": "LD1", "flow_direction": 1, "set_drop": 20000.0},
    )
    _, graph, _, state = _solve(data)
    drop = state.pressures[graph.node_map["AS-1"]] - state.pressures[graph.node_map["LD1"]]
    assert 20000.0 < drop < 23000.0


def test_plain_valve_increases_drop():
    data = inline_fitting_data(
        "valves", {"id": "V1", "flow_direction": 1, "diameter": 0.05},
    )
    _, graph, _, with_valve = _solve(data)
    plain = dict(data, valves=[], tees=[
        {"id": "V1", "junction_a": "P1", "junction_b": "P2", "junction_c": "P2"},
    ])
    _, plain_graph, _, without_valve = _solve(plain)
    assert with_valve.pressures[graph.node_map["U1"]] < without_valve.pressures[plain_graph.node_map["U1"]]


def test_boundary_length_mismatch_raises(single_pipe_data):
    network, graph, fluid = build(single_pipe_data)
    with pytest.raises(DataError):
        solve(graph, fluid, Boundary((700000.0, 690000.0), (10.0,)))
    with pytest.raises(DataError):
        solve(graph, fluid, Boundary((700000.0,), ()))


def test_non_positive_pressure_raises(single_pipe_data):
    network, graph, fluid = build(single_pipe_data)
    with pytest.raises(DataError):
        solve(graph, fluid, network.boundary().with_station_pressures([0.0]))
