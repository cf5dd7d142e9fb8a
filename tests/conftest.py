import pytest

from gascacu.calculation.models import Network
from gascacu.calculation.physics import Fluid
from gascacu.calculation.topology import NetworkGraph


def make_pipe(pid, a, b, length=100.0, diameter=0.1, direction=1):
    return {
        "id": pid,
        "junction_a": a,
        "junction_b": b,
        "flow_direction": direction,
        "straight_sections": [{"length": length, "diameter": diameter, "roughness": 0.1}],
    }


def make_station(sid="AS-1", pipe="P1", pressure=700000.0, count=3, max_flow=20.0, min_degree=0.5):
    return {
        "id": sid,
        "pipe": pipe,
        "pressure": pressure,
        "compressors": [
            {"index": i + 1, "max_flow": max_flow, "min_degree": min_degree} for i in range(count)
        ],
    }


def make_user(uid="U1", pipe="P1", flow=10.0, min_pressure=400000.0):
    return {"id": uid, "pipe": pipe, "flow": flow, "min_pressure": min_pressure}


def build(data):
    network = Network(data)
    graph = NetworkGraph(network).build()
    fluid = Fluid(network.fluid_number, network.temperature)
    return network, graph, fluid


@pytest.fixture
def single_pipe_data():
    """一座空压站经一根直管向一个用户供气。"""
    return {
        "fluid_number": 1,
        "temperature": 293.15,
        "stations": [make_station()],
        "users": [make_user()],
        "pipes": [make_pipe("P1", "AS-1", "U1")],
    }


@pytest.fixture
def tee_data():
    """空压站 -> 三通 -> 两个用户。"""
    return {
        "fluid_number": 1,
        "temperature": 293.15,
        "stations": [make_station(pipe="P1")],
        "users": [make_user("U1", "P2", flow=6.0), make_user("U2", "P3", flow=4.0)],
        "pipes": [
            make_pipe("P1", "AS-1", "T1", length=200.0),
            make_pipe("P2", "T1", "U1"),
            make_pipe("P3", "T1", "U2"),
        ],
        "tees": [{"id": "T1", "junction_a": "P1", "junction_b": "P2", "junction_c": "P3"}],
    }


def inline_fitting_data(key, fitting):
    """空压站 -> P1 -> 管件 -> P2 -> 用户，管件的附加规则作用在 P1 上。"""
    fitting = dict(fitting, junction_a="P1", junction_b="P2")
    return {
        "fluid_number": 1,
        "temperature": 293.15,
        "stations": [make_station(pipe="P1")],
        "users": [make_user("U1", "P2")],
        "pipes": [
            make_pipe("P1", "AS-1", fitting["id"]),
            make_pipe("P2", fitting["id"], "U1"),
        ],
        key: [fitting],
    }


def loop_data(fitting_key, fitting):
    """T1 与 T2 之间两条并联支路：P1 -> 管件 -> P2 与直连的 P3，T2 经 P4 向用户供气。"""
    fitting = dict(fitting, junction_a="P1", junction_b="P2")
    return {
        "fluid_number": 1,
        "temperature": 293.15,
        "stations": [make_station(pipe="P0")],
        "users": [make_user("U1", "P4")],
        "pipes": [
            make_pipe("P0", "AS-1", "T1"),
            make_pipe("P1", "T1", fitting["id"]),
            make_pipe("P2", fitting["id"], "T2"),
            make_pipe("P3", "T1", "T2"),
            make_pipe("P4", "T2", "U1"),
        ],
        "tees": [
            {"id": "T1", "junction_a": "P0", "junction_b": "P1", "junction_c": "P3"},
            {"id": "T2", "junction_a": "P2", "junction_b": "P3", "junction_c": "P4"},
        ],
        fitting_key: [fitting],
    }
