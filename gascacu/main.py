import logging
import sys

from gascacu.calculation import CalculationManager, load_options


def _pipe(pid, a, b, length, diameter, bends=0):
    data = {
        "id": pid,
        "junction_a": a,
        "junction_b": b,
        "flow_direction": 1,
        "straight_sections": [{"length": length, "diameter": diameter, "roughness": 0.1}],
    }
    if bends:
        data["bend_sections"] = [{"quantity": bends, "angle": 90, "radius_ratio": 1.5}]
    return data


def _station(sid, pipe, pressure, count):
    return {
        "id": sid,
        "name": sid,
        "pipe": pipe,
        "pressure": pressure,
        "compressors": [{"index": i + 1, "max_flow": 120.0, "min_degree": 0.6} for i in range(count)],
    }


def demo_network():
    """三座空压站向两个用户供气的演示管网。"""
    return {
        "fluid_number": 1,
        "temperature": 293.15,
        "stations": [
            _station("AS-1", "P1", 700000.0, 3),
            _station("AS-2", "P2", 700000.0, 3),
            _station("AS-3", "P6", 700000.0, 2),
        ],
        "users": [
            {"id": "U1", "name": "轧钢车间", "pipe": "P4", "flow": 180.0, "min_pressure": 500000.0},
            {"id": "U2", "name": "炼钢车间", "pipe": "P7", "flow": 150.0, "min_pressure": 500000.0},
        ],
        "pipes": [
            _pipe("P1", "AS-1", "T1", 300.0, 0.3, bends=2),
            _pipe("P2", "AS-2", "T1", 450.0, 0.3, bends=2),
            _pipe("P3", "T1", "T2", 800.0, 0.35, bends=4),
            _pipe("P4a", "T2", "V1", 200.0, 0.25),
            _pipe("P4", "V1", "U1", 150.0, 0.25, bends=1),
            _pipe("P5", "T2", "T3", 600.0, 0.3, bends=2),
            _pipe("P6", "AS-3", "T3", 350.0, 0.3, bends=2),
            _pipe("P7", "T3", "U2", 400.0, 0.3, bends=3),
        ],
        "tees": [
            {"id": "T1", "junction_a": "P1", "junction_b": "P2", "junction_c": "P3"},
            {"id": "T2", "junction_a": "P3", "junction_b": "P4a", "junction_c": "P5"},
            {"id": "T3", "junction_a": "P5", "junction_b": "P6", "junction_c": "P7"},
        ],
        "valves": [
            {"id": "V1", "junction_a": "P4a", "junction_b": "P4", "flow_direction": 1, "diameter": 0.25},
        ],
    }


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config_path = sys.argv[1] if len(sys.argv) > 1 else "gascacu.json"
    solver_options, optimization_options = load_options(config_path)

    manager = CalculationManager(demo_network(), solver_options, optimization_options, seed=0)
    response = manager.run_static()
    print(response["msg"])
    return 0 if response["success"] else 1


if __name__ == "__main__":
    sys.exit(main())
