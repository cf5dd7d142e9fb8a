import logging
import math
import warnings
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np
from scipy.sparse import csr_matrix, diags
from scipy.sparse.linalg import MatrixRankWarning, spsolve

from .config import SolverOptions
from .models import Boundary, DataError
from .physics import (
    Fluid, calc_bend_resistance, calc_density, calc_friction_factor,
    calc_reducer_resistance, calc_reynolds, calc_straight_resistance,
    calc_valve_resistance, calc_velocity,
)
from .topology import NetworkGraph

logger = logging.getLogger(__name__)


class StopReason(Enum):
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"      # 超过迭代上限仍未收敛
    DEGENERATE_FLOW = "degenerate_flow"    # 出现近零流量管段，提前终止
    SINGULAR = "singular"                  # 节点导纳矩阵奇异


@dataclass
class SolvedState:
    """一次平差计算的结果。每次求解都会新建，不做增量更新。"""
    pressures: np.ndarray        # 节点绝对压力 (Pa)
    flows: np.ndarray            # 管道体积流量 (m³/min)，正值表示沿约定流向
    mass_flows: np.ndarray       # 管道质量流量 (kg/s)
    resistances: np.ndarray      # 最后一轮使用的管道阻力系数
    base_pressure: float
    iterations: int
    feasible: bool
    stop_reason: StopReason


@dataclass
class _Override:
    edge: int
    value: float
    start: int      # 阀门约定流向的起点
    end: int
    node: int = -1  # 阀门自身的节点索引


class HydraulicSolver:
    """
    管网水力平衡求解器（不动点迭代，欧姆定律类比）。
    实现原理：
    1. 以上一轮的管道流量估计计算各管道的密度、流速、雷诺数、摩阻系数，得到阻力系数 R。
    2. 流导 G = 1/(R*|Q|)，组装节点导纳矩阵 Y = A*G*A^T，在已知气源压降下求解非气源节点压降。
    3. 由节点压降反算管道流量，与上一轮估计比较最大相对变化，未收敛则取两者平均继续迭代。
    """
    def __init__(self, graph: NetworkGraph, fluid: Fluid, options: Optional[SolverOptions] = None):
        self.graph = graph
        self.fluid = fluid
        self.options = options or SolverOptions()

        # 管件附加阻力与特殊阀门规则：每次求解前按管道索引预先整理一次
        self._valve_terms: List[Tuple[int, float]] = []
        self._reducers: List[Tuple[int, object]] = []
        self._limit_pressure: List[_Override] = []
        self._limit_flow: List[_Override] = []
        self._limit_drop: List[_Override] = []

    def solve(self, boundary: Boundary) -> SolvedState:
        """执行一次平差计算主循环"""
        graph, opts = self.graph, self.options
        self._check_inputs(boundary)
        self._build_override_table()

        n, m, k = graph.node_count, graph.edge_count, graph.free_count
        rho_0 = self.fluid.rho
        A = csr_matrix(graph.incidence)
        AT = A.transpose().tocsr()

        # 压力边界：以最高站压为基准压力，其余气源表示为相对基准的压降
        station_pressures = np.asarray(boundary.station_pressures, dtype=float)
        base = float(station_pressures.max())
        source_drops = base - station_pressures

        # 流量边界：用户体积流量 (m³/min) 换算为质量流量 (kg/s)
        withdrawal = np.zeros(k)
        for node, flow in zip(graph.user_nodes, boundary.user_flows):
            withdrawal[node] += rho_0 * flow / 60.0

        drops = np.zeros(n)
        drops[k:] = source_drops
        estimate = np.full(m, opts.initial_flow)   # 用于线性化的流量估计
        solved: Optional[np.ndarray] = None        # 上一轮解出的流量
        resistances = np.zeros(m)
        reason = StopReason.MAX_ITERATIONS
        iteration = 0

        while True:
            iteration += 1

            # 限压阀：第一轮直接把阀所在节点的压降钉在设定值上
            if iteration == 1:
                for rule in self._limit_pressure:
                    drops[rule.node] = base - rule.value

            resistances = self._calc_resistances(drops, estimate, solved, base)

            product = resistances * np.abs(estimate)
            with np.errstate(divide="ignore", invalid="ignore"):
                conductance = np.where(product == 0, 0.0, 1.0 / product)
            G = diags(conductance)

            Y = (A @ G @ AT).tocsc()
            Y_free = Y[:k, :k]
            Y_source = Y[:k, k:]
            # 把已知的气源压降折算进非气源节点的流量向量
            rhs = withdrawal - Y_source @ source_drops

            try:
                with warnings.catch_warnings():
                    warnings.simplefilter("error", MatrixRankWarning)
                    free_drops = np.atleast_1d(spsolve(Y_free, rhs))
            except (MatrixRankWarning, RuntimeError, ValueError) as exc:
                logger.warning("节点导纳矩阵求解失败 (检查拓扑孤岛或零流导管段): %s", exc)
                drops[:k] = np.nan
                solved = np.full(m, np.nan)
                reason = StopReason.SINGULAR
                break

            drops[:k] = free_drops
            edge_pressures = AT @ drops
            new_flows = conductance * edge_pressures

            with np.errstate(divide="ignore", invalid="ignore"):
                relative = np.abs((new_flows - estimate) / estimate)
            relative[np.isnan(relative)] = 0.0
            error = float(relative.max()) if m else 0.0

            logger.debug("迭代 [%3d]: 最大相对误差 = %.4e", iteration, error)

            estimate = (estimate + new_flows) / 2.0
            solved = new_flows

            if error <= opts.tolerance:
                reason = StopReason.CONVERGED
                break
            if iteration > opts.max_iterations:
                reason = StopReason.MAX_ITERATIONS
                break
            volumetric = np.abs(new_flows) * 60.0 / rho_0
            if np.any(volumetric < opts.min_flow):
                reason = StopReason.DEGENERATE_FLOW
                break

        pressures = base - drops
        flows = solved * 60.0 / rho_0
        feasible = self._check_feasible(pressures, flows)

        logger.debug(
            "平差计算结束: %s, 迭代 %d 次, 约束%s",
            reason.value, iteration, "满足" if feasible else "不满足",
        )
        return SolvedState(
            pressures=pressures,
            flows=flows,
            mass_flows=solved,
            resistances=resistances,
            base_pressure=base,
            iterations=iteration,
            feasible=feasible,
            stop_reason=reason,
        )

    def _check_inputs(self, boundary: Boundary):
        net = self.graph.network
        if len(boundary.station_pressures) != len(net.stations):
            raise DataError(
                f"空压站压力个数 {len(boundary.station_pressures)} 与空压站数 {len(net.stations)} 不一致"
            )
        if len(boundary.user_flows) != len(net.users):
            raise DataError(f"用户流量个数 {len(boundary.user_flows)} 与用户数 {len(net.users)} 不一致")
        if any(math.isnan(p) or p <= 0 for p in boundary.station_pressures):
            raise DataError("空压站压力必须为正数")
        self.graph.validate()

    def _build_override_table(self):
        graph, net = self.graph, self.graph.network
        pipe_map, node_map = graph.pipe_map, graph.node_map

        def ends(edge, direction):
            start, end = graph.edge_nodes[edge]
            return (start, end) if direction == 1 else (end, start)

        self._valve_terms = [(pipe_map[v.junction_a], v.diameter) for v in net.valves]
        self._reducers = [(pipe_map[r.junction_a], r) for r in net.reducers]

        self._limit_pressure = []
        for valve in net.limit_pressure_valves:
            edge = pipe_map[valve.junction_a]
            self._limit_pressure.append(
                _Override(edge, valve.set_pressure, *ends(edge, valve.flow_direction), node=node_map[valve.id])
            )
        self._limit_flow = []
        for valve in net.limit_flow_valves:
            edge = pipe_map[valve.junction_a]
            target = valve.set_flow / 60.0 * self.fluid.rho   # m³/min -> kg/s
            self._limit_flow.append(_Override(edge, target, *ends(edge, valve.flow_direction)))
        self._limit_drop = []
        for valve in net.limit_drop_valves:
            edge = pipe_map[valve.junction_a]
            self._limit_drop.append(_Override(edge, valve.set_drop, *ends(edge, valve.flow_direction)))

    def _calc_resistances(self, drops: np.ndarray, estimate: np.ndarray,
                          solved: Optional[np.ndarray], base: float) -> np.ndarray:
        """按当前压降场与流量估计计算每条管道的阻力系数 R，并施加特殊阀门规则。"""
        graph, opts = self.graph, self.options
        rho_0, mu, temperature = self.fluid.rho, self.fluid.mu, self.fluid.temperature

        resistances = np.zeros(graph.edge_count)
        densities = np.zeros(graph.edge_count)
        reynolds = np.zeros(graph.edge_count)

        for i, pipe in enumerate(graph.pipes):
            start, end = graph.edge_nodes[i]
            mean_drop = (drops[start] + drops[end]) / 2.0
            density = calc_density(rho_0, temperature, base - mean_drop)

            D = pipe.main_diameter
            v = calc_velocity(estimate[i], D, density)
            re = calc_reynolds(v, D, density, mu)
            f = calc_friction_factor(
                D, re, pipe.main_roughness,
                tol=opts.friction_tolerance, max_iter=opts.friction_max_iterations,
            )

            r = 0.0
            for section in pipe.straight_sections:
                r += calc_straight_resistance(section.length, section.diameter, density, f)
            for bend in pipe.bend_sections:
                r += calc_bend_resistance(bend, D, density, f)

            resistances[i] = r
            densities[i] = density
            reynolds[i] = re

        # 附加普通阀门与变径阻力
        for edge, diameter in self._valve_terms:
            resistances[edge] += calc_valve_resistance(diameter, densities[edge])
        for edge, reducer in self._reducers:
            resistances[edge] += calc_reducer_resistance(
                reducer.diameter_a, reducer.diameter_b, reducer.angle,
                estimate[edge], densities[edge], reynolds[edge],
            )

        # 特殊阀门需要上一轮的压力场与流量，第一轮跳过
        if solved is None:
            return resistances

        # 限压阀：阀前压力高出设定值的部分全部由该管道消耗
        for rule in self._limit_pressure:
            q = solved[rule.edge]
            if q == 0 or math.isnan(q):
                continue
            start, end = graph.edge_nodes[rule.edge]
            upstream = start if q > 0 else end
            margin = (base - drops[upstream]) - rule.value
            if margin > 0:
                resistances[rule.edge] = margin / q ** 2

        # 限流阀：以当前阀两端压差反推使流量等于设定值的阻力
        for rule in self._limit_flow:
            pressure_drop = abs(drops[rule.start] - drops[rule.end])
            resistances[rule.edge] = pressure_drop / rule.value ** 2

        # 恒压降阀：叠加设定压降对应的阻力
        for rule in self._limit_drop:
            q = solved[rule.edge]
            if q != 0 and not math.isnan(q):
                resistances[rule.edge] += rule.value / q ** 2

        return resistances

    def _check_feasible(self, pressures: np.ndarray, flows: np.ndarray) -> bool:
        """验证结果：无 NaN 压力、用户压力不低于下限、气源出口不倒流。"""
        graph, net = self.graph, self.graph.network

        if np.any(np.isnan(pressures)):
            return False

        for user, node in zip(net.users, graph.user_nodes):
            if pressures[node] < user.min_pressure:
                return False

        for node, edge in zip(graph.source_nodes, graph.source_edges):
            q = flows[edge]
            outflow = q if graph.edge_nodes[edge][0] == node else -q
            if math.isnan(outflow) or outflow < 0:
                return False

        return True


def solve(graph: NetworkGraph, fluid: Fluid, boundary: Boundary,
          options: Optional[SolverOptions] = None) -> SolvedState:
    """对给定拓扑与边界条件做一次平差计算。"""
    return HydraulicSolver(graph, fluid, options).solve(boundary)
