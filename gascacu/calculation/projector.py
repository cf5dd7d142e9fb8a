import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .physics import exergy
from .solver import SolvedState
from .topology import NetworkGraph

logger = logging.getLogger(__name__)

# 各空压站功率模型 power = c1 * p * 1e-5 + c2 * q + c3 的系数 (p: Pa, q: m³/min, power: kW)
DEFAULT_POWER_COEFFICIENTS: Dict[str, Tuple[float, float, float]] = {
    "AS-1": (51.7, 5.5833, -312.37),
    "AS-2": (51.5, 5.6867, -264.2),
    "AS-3": (34.3, 5.93, -238.0),
}
FALLBACK_POWER_COEFFICIENTS = DEFAULT_POWER_COEFFICIENTS["AS-1"]
MIN_POWER = 10.0          # 线性模型给出非正值时的功率下限
WASTE_TOLERANCE = 0.1     # 小于该值的浪费流量视为 0


@dataclass
class ValveSplit:
    """压缩机阀门开度分配结果。"""
    solvable: bool
    degrees: List[float]
    open_count: int
    realized_flow: float
    wasted_flow: float


def split_compressor_valves(count: int, max_flow: float, min_degree: float,
                            target_flow: float) -> ValveSplit:
    """
    根据站点所需流量，计算各压缩机的阀门开度、开启台数和因保压产生的浪费流量。

    1. 开启台数 = ceil(T / M)，超过拥有台数则不可解。
    2. 平均开度低于下限时，所有开启的压缩机都开到下限。
    3. 只需一台时直接取平均开度。
    4. 否则依次尝试 k 台满负荷、其余均分，第一个使剩余开度不低于下限的方案即被采用；
       若均不满足，最后一台作为调节机固定在下限开度。
    """
    degrees = [0.0] * count
    # 非正或 NaN 流量 (求解失败时) 均视为无需开机
    if not target_flow > 0:
        return ValveSplit(True, degrees, 0, 0.0, 0.0)

    open_count = math.ceil(target_flow / max_flow)
    if open_count > count:
        return ValveSplit(False, degrees, open_count, 0.0, 0.0)

    average = target_flow / open_count / max_flow
    if average < min_degree:
        for i in range(open_count):
            degrees[i] = min_degree
    elif open_count == 1:
        degrees[0] = min(average, 1.0)
    else:
        for full in range(1, open_count):
            for i in range(full):
                degrees[i] = 1.0

            remaining = open_count - full
            shared = (target_flow - full * max_flow) / (remaining * max_flow)

            if full == open_count - 1:
                degrees[full] = min_degree  # 调节机

            if shared >= min_degree:
                for i in range(full, open_count):
                    degrees[i] = min(shared, 1.0)
                break

    realized = sum(d * max_flow for d in degrees)
    wasted = realized - target_flow
    if abs(wasted) < WASTE_TOLERANCE:
        wasted = 0.0
    return ValveSplit(True, degrees, open_count, realized, wasted)


def calc_power(coefficients: Tuple[float, float, float], pressure: float, flow: float) -> float:
    """线性功率模型；流量非正 (或为 NaN) 时功率为 0，模型值非正时取下限值。"""
    if not flow > 0:
        return 0.0
    c1, c2, c3 = coefficients
    power = c1 * pressure * 1e-5 + c2 * flow + c3
    return power if power > 0 else MIN_POWER


@dataclass
class CompressorResult:
    index: int
    degree: float
    flow: float
    power: float


@dataclass
class StationResult:
    id: str
    pressure: float
    flow: float
    wasted_flow: float
    open_count: int
    total_power: float
    solvable: bool
    compressors: List[CompressorResult] = field(default_factory=list)


@dataclass
class UserResult:
    id: str
    pressure: float
    flow: float


@dataclass
class PipeResult:
    id: str
    flow: float
    pressure_from: float     # 约定流向起点压力
    pressure_to: float
    drop: float
    mean_pressure: float
    efficiency: float


@dataclass
class FittingResult:
    id: str
    kind: str
    pressure: float
    flow: float


@dataclass
class TeeResult:
    id: str
    pressure: float
    flow_a: float
    flow_b: float
    flow_c: float


@dataclass
class NetworkResults:
    feasible: bool
    iterations: int
    stations: List[StationResult]
    users: List[UserResult]
    pipes: List[PipeResult]
    fittings: List[FittingResult]
    tees: List[TeeResult]
    total_power: float
    system_efficiency: float
    total_efficiency: float

    def station(self, station_id: str) -> Optional[StationResult]:
        return next((s for s in self.stations if s.id == station_id), None)

    def pipe(self, pipe_id: str) -> Optional[PipeResult]:
        return next((p for p in self.pipes if p.id == pipe_id), None)


def _ratio(numerator: float, denominator: float) -> float:
    if denominator <= 0 or math.isnan(numerator) or math.isnan(denominator):
        return 0.0
    return min(max(numerator / denominator, 0.0), 1.0)


def _signed_exergy(flow: float, pressure: float) -> float:
    if math.isnan(flow):
        return 0.0
    return math.copysign(exergy(flow, pressure), flow)


class ResultProjector:
    """将平差得到的节点压力/管道流量映射为各组件的工程结果。"""

    def __init__(self, graph: NetworkGraph):
        self.graph = graph

    def project(self, state: SolvedState) -> NetworkResults:
        graph, net = self.graph, self.graph.network
        pressures, flows = state.pressures, state.flows

        stations = [
            self._project_station(station, node, edge, pressures, flows)
            for station, node, edge in zip(net.stations, graph.source_nodes, graph.source_edges)
        ]
        total_power = sum(s.total_power for s in stations)

        users = [
            UserResult(u.id, float(pressures[node]), float(flows[edge]))
            for u, node, edge in zip(net.users, graph.user_nodes, graph.user_edges)
        ]

        pipes = []
        for i, pipe in enumerate(graph.pipes):
            start, end = graph.edge_nodes[i]
            p_from, p_to = float(pressures[start]), float(pressures[end])
            q = float(flows[i])
            e_in, e_out = exergy(q, p_from), exergy(q, p_to)
            pipes.append(PipeResult(
                id=pipe.id,
                flow=q,
                pressure_from=p_from,
                pressure_to=p_to,
                drop=abs(p_from - p_to),
                mean_pressure=(p_from + p_to) / 2.0,
                efficiency=_ratio(min(e_in, e_out), max(e_in, e_out)),
            ))

        fittings = [
            FittingResult(
                f.id, f.kind,
                float(pressures[graph.node_map[f.id]]),
                float(flows[graph.pipe_map[f.junction_a]]),
            )
            for f in net.fittings
        ]
        tees = [
            TeeResult(
                t.id,
                float(pressures[graph.node_map[t.id]]),
                float(flows[graph.pipe_map[t.junction_a]]),
                float(flows[graph.pipe_map[t.junction_b]]),
                float(flows[graph.pipe_map[t.junction_c]]),
            )
            for t in net.tees
        ]

        # 系统能效：用户端输出㶲 / 气源输入㶲；总能效的输入侧计入浪费流量
        e_out_total = sum(exergy(u.flow, u.pressure) for u in users)
        # 气源侧按带符号流量累加，倒流的空压站会减小输入㶲
        e_in_net = sum(_signed_exergy(s.flow, s.pressure) for s in stations)
        e_in_gross = sum(_signed_exergy(s.flow + s.wasted_flow, s.pressure) for s in stations)

        results = NetworkResults(
            feasible=state.feasible,
            iterations=state.iterations,
            stations=stations,
            users=users,
            pipes=pipes,
            fittings=fittings,
            tees=tees,
            total_power=total_power,
            system_efficiency=_ratio(e_out_total, e_in_net),
            total_efficiency=_ratio(e_out_total, e_in_gross),
        )
        logger.debug(
            "结果映射完成: 总功率 %.2f kW, 系统能效 %.4f, 总能效 %.4f",
            results.total_power, results.system_efficiency, results.total_efficiency,
        )
        return results

    def _project_station(self, station, node, edge, pressures, flows) -> StationResult:
        pressure = float(pressures[node])
        q = float(flows[edge])
        # 正值表示流出气源
        flow = q if self.graph.edge_nodes[edge][0] == node else -q

        first = station.compressors[0]
        split = split_compressor_valves(len(station.compressors), first.max_flow, first.min_degree, flow)
        if not split.solvable:
            logger.warning(
                "空压站 '%s' 需要 %d 台压缩机才能提供 %.2f m³/min，超过拥有台数 %d",
                station.id, split.open_count, flow, len(station.compressors),
            )

        coefficients = (station.power_coefficients
                        or DEFAULT_POWER_COEFFICIENTS.get(station.id, FALLBACK_POWER_COEFFICIENTS))
        compressors = []
        for compressor, degree in zip(station.compressors, split.degrees):
            q_single = degree * compressor.max_flow
            compressors.append(CompressorResult(
                compressor.index, degree, q_single, calc_power(coefficients, pressure, q_single),
            ))

        # 站点总功率按计入浪费流量的总输出流量计算
        total_power = calc_power(coefficients, pressure, flow + split.wasted_flow)
        return StationResult(
            id=station.id,
            pressure=pressure,
            flow=flow,
            wasted_flow=split.wasted_flow,
            open_count=split.open_count,
            total_power=total_power,
            solvable=split.solvable,
            compressors=compressors,
        )


def project(graph: NetworkGraph, state: SolvedState) -> NetworkResults:
    return ResultProjector(graph).project(state)


def format_summary(results: NetworkResults) -> str:
    """生成计算结果摘要表格 (压力 kPa, 流量 m³/min, 功率 kW)。"""
    lines = ["", "--- 计算结果摘要 ---"]
    lines.append(f"{'空压站':<10} | {'压力 (kPa)':<12} | {'流量':<10} | {'浪费流量':<10} | {'开机台数':<8} | {'功率 (kW)':<10}")
    lines.append("-" * 78)
    for s in results.stations:
        lines.append(
            f"{s.id:<10} | {s.pressure / 1e3:12.2f} | {s.flow:10.3f} | {s.wasted_flow:10.3f} | {s.open_count:8d} | {s.total_power:10.2f}"
        )
    lines.append("")
    lines.append(f"{'用户端':<10} | {'压力 (kPa)':<12} | {'流量':<10}")
    lines.append("-" * 40)
    for u in results.users:
        lines.append(f"{u.id:<10} | {u.pressure / 1e3:12.2f} | {u.flow:10.3f}")
    lines.append("")
    lines.append(f"{'管道':<10} | {'流量':<10} | {'压降 (kPa)':<12} | {'输送能效':<8}")
    lines.append("-" * 50)
    for p in results.pipes:
        lines.append(f"{p.id:<10} | {p.flow:10.3f} | {p.drop / 1e3:12.4f} | {p.efficiency:8.4f}")
    lines.append("-" * 50)
    lines.append(
        f"总功率 {results.total_power:.2f} kW, 系统能效 {results.system_efficiency:.4f}, "
        f"总能效 {results.total_efficiency:.4f}, 约束{'满足' if results.feasible else '不满足'}"
    )
    return "\n".join(lines)
