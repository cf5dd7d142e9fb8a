"""
空压站出口压力寻优。

以种群启发式算法（搜索行为 + 攻击反应两个阶段）在各空压站压力组成的
有界空间中搜索，使 0.7*总功率 - 200*总能效 最小。每次评价都完整地做一次
平差计算与结果映射，不满足约束的方案适应度记为 +inf。

搜索结束后只有严格优于初始解、且最终复算仍满足约束的方案才会被采用，
否则重新计算并返回初始解。
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np

from .config import OptimizationOptions, SolverOptions
from .models import Boundary
from .physics import Fluid
from .projector import NetworkResults, ResultProjector
from .solver import HydraulicSolver, SolvedState
from .topology import NetworkGraph

logger = logging.getLogger(__name__)


class OptimizerState(Enum):
    IDLE = "idle"
    BOUNDS_INITIALIZED = "bounds_initialized"
    POPULATION_SEEDED = "population_seeded"
    ITERATING = "iterating"
    EXHAUSTED = "exhausted"
    VALIDATED = "validated"
    DONE = "done"


class Outcome(Enum):
    IMPROVED = "improved"
    NO_IMPROVEMENT = "no_improvement"    # 未找到优于初始解的方案
    REJECTED = "rejected"                # 最优方案复算后不满足约束
    CANCELLED = "cancelled"


@dataclass
class OptimizationResult:
    boundary: Boundary
    state: SolvedState
    results: NetworkResults
    fitness: float
    baseline_fitness: float
    outcome: Outcome
    generations: int
    history: List[float] = field(default_factory=list)   # 每代结束时的全局最优适应度
    optimizer_state: OptimizerState = OptimizerState.DONE


class PressureOptimizer:
    """
    空压站压力寻优器。

    cancel_event 为可选的协作式取消信号（任何带 is_set() 的对象，如 threading.Event），
    每一代开始前检查一次；被取消时放弃搜索并回退到初始解。
    """

    def __init__(self, graph: NetworkGraph, fluid: Fluid,
                 options: Optional[OptimizationOptions] = None,
                 solver_options: Optional[SolverOptions] = None,
                 seed: Optional[int] = None, cancel_event=None):
        self.graph = graph
        self.options = options or OptimizationOptions()
        self.solver = HydraulicSolver(graph, fluid, solver_options)
        self.projector = ResultProjector(graph)
        self.seed = seed
        self.cancel_event = cancel_event

        self.state = OptimizerState.IDLE
        self.evaluations = 0
        self._boundary: Optional[Boundary] = None
        self.lower = np.zeros(0)
        self.upper = np.zeros(0)

    # --------------------------------------------------------------
    def optimize(self, boundary: Boundary) -> OptimizationResult:
        opts = self.options
        rng = np.random.default_rng(self.seed)
        self._boundary = boundary
        self.evaluations = 0

        baseline = np.asarray(boundary.station_pressures, dtype=float)
        self._init_bounds(baseline)
        baseline_fitness = self.fitness(baseline)
        logger.info("初始解适应度: %.4f", baseline_fitness)
        logger.info(
            "寻优启动，种群大小: %d, 最大代数: %d, 步长: %.1f Pa",
            opts.population_size, opts.max_generations, opts.step_size,
        )

        population, scores = self._seed_population(rng, baseline, baseline_fitness)
        best_idx = int(np.argmin(scores))
        best, best_fitness = population[best_idx].copy(), float(scores[best_idx])

        history: List[float] = []
        stall = 0
        generation = 0
        cancelled = False
        self.state = OptimizerState.ITERATING

        for generation in range(1, opts.max_generations + 1):
            if self.cancel_event is not None and self.cancel_event.is_set():
                logger.warning("寻优在第 %d 代被取消，回退到初始解", generation)
                cancelled = True
                break

            previous_best = best_fitness
            self._search_phase(rng, population, scores, best)
            self._reaction_phase(rng, population, scores)

            idx = int(np.argmin(scores))
            if scores[idx] < best_fitness:
                best, best_fitness = population[idx].copy(), float(scores[idx])

            if best_fitness < previous_best - 1e-6:
                stall = 0
            else:
                stall += 1
            history.append(best_fitness)

            if generation % 20 == 0:
                logger.info(
                    "第 %d 代, 当前最优适应度: %.4f, 相比初始解改进: %.2f",
                    generation, best_fitness, baseline_fitness - best_fitness,
                )
            if stall >= opts.stall_limit:
                logger.info("连续 %d 代无改进，提前终止寻优", opts.stall_limit)
                break

        self.state = OptimizerState.EXHAUSTED

        if cancelled:
            return self._restore(boundary, baseline_fitness, Outcome.CANCELLED, generation, history)

        if not best_fitness < baseline_fitness:
            logger.warning(
                "未找到比初始解更优的组合，保持原始配置。初始适应度: %.4f, 最优适应度: %.4f",
                baseline_fitness, best_fitness,
            )
            return self._restore(boundary, baseline_fitness, Outcome.NO_IMPROVEMENT, generation, history)

        logger.info("找到更优解，改进程度: %.2f，准备应用最优压力进行最终计算", baseline_fitness - best_fitness)
        candidate = boundary.with_station_pressures(self._snap(best))
        state = self.solver.solve(candidate)
        self.state = OptimizerState.VALIDATED
        if not state.feasible:
            logger.warning("应用最优压力后管网计算结果无法满足约束条件，返回初始配置")
            return self._restore(boundary, baseline_fitness, Outcome.REJECTED, generation, history)

        results = self.projector.project(state)
        self.state = OptimizerState.DONE
        return OptimizationResult(
            boundary=candidate,
            state=state,
            results=results,
            fitness=self._score(results),
            baseline_fitness=baseline_fitness,
            outcome=Outcome.IMPROVED,
            generations=generation,
            history=history,
        )

    # --------------------------------------------------------------
    def fitness(self, position: np.ndarray) -> float:
        """适应度：不满足约束为 +inf，否则为 0.7*总功率 - 200*总能效 (越小越好)。"""
        self.evaluations += 1
        state = self.solver.solve(self._boundary.with_station_pressures(position))
        if not state.feasible:
            return float("inf")
        return self._score(self.projector.project(state))

    def _score(self, results: NetworkResults) -> float:
        opts = self.options
        return opts.power_weight * results.total_power - opts.efficiency_weight * results.total_efficiency

    def _init_bounds(self, baseline: np.ndarray):
        # 以当前压力为中心，下限 -lower_offset，上限 +upper_offset
        self.lower = self._snap(baseline - self.options.lower_offset)
        self.upper = self._snap(baseline + self.options.upper_offset)
        self.state = OptimizerState.BOUNDS_INITIALIZED

    def _seed_population(self, rng, baseline, baseline_fitness):
        opts = self.options
        size, dim = opts.population_size, len(baseline)
        population = np.empty((size, dim))
        scores = np.empty(size)

        # 第一个个体为初始解；前一半在初始解附近生成，其余在边界内均匀生成
        population[0] = baseline
        scores[0] = baseline_fitness
        span = self.upper - self.lower
        for i in range(1, size):
            if i < size // 2:
                offset = (rng.random(dim) - 0.5) * 2.0 * span * opts.near_fraction
                population[i] = self._clamp(baseline + offset)
            else:
                population[i] = self._snap(self.lower + rng.random(dim) * span)
            scores[i] = self.fitness(population[i])

        self.state = OptimizerState.POPULATION_SEEDED
        return population, scores

    def _search_phase(self, rng, population, scores, best):
        """阶段一：搜索行为，个体向全局最优移动并附加随机扰动。"""
        size, dim = population.shape
        for i in range(size):
            flags = rng.integers(0, 2, size=dim)
            jitter = (rng.random(dim) - 0.5) * self.options.step_size
            candidate = population[i] + rng.random(dim) * (best - flags * population[i]) + jitter
            self._try_accept(population, scores, i, self._clamp(candidate))

    def _reaction_phase(self, rng, population, scores):
        """阶段二：攻击反应，个体向随机选中的一个目标个体移动。"""
        size, dim = population.shape
        target = population[rng.integers(size)].copy()
        for i in range(size):
            flag = rng.integers(0, 2)
            candidate = population[i] + rng.random(dim) * (target - flag * population[i])
            self._try_accept(population, scores, i, self._clamp(candidate))

    def _try_accept(self, population, scores, i, candidate):
        value = self.fitness(candidate)
        if value < scores[i]:
            population[i] = candidate
            scores[i] = value

    def _snap(self, values: np.ndarray) -> np.ndarray:
        step = self.options.step_size
        return np.round(np.asarray(values, dtype=float) / step) * step

    def _clamp(self, values: np.ndarray) -> np.ndarray:
        return self._snap(np.clip(self._snap(values), self.lower, self.upper))

    def _restore(self, boundary: Boundary, baseline_fitness: float, outcome: Outcome,
                 generations: int, history: List[float]) -> OptimizationResult:
        """重新计算初始解，保证返回的状态与边界条件一致。"""
        state = self.solver.solve(boundary)
        results = self.projector.project(state)
        self.state = OptimizerState.DONE
        return OptimizationResult(
            boundary=boundary,
            state=state,
            results=results,
            fitness=baseline_fitness,
            baseline_fitness=baseline_fitness,
            outcome=outcome,
            generations=generations,
            history=history,
        )


def optimize(graph: NetworkGraph, fluid: Fluid, boundary: Boundary,
             options: Optional[OptimizationOptions] = None, seed: Optional[int] = None,
             cancel_event=None) -> OptimizationResult:
    return PressureOptimizer(graph, fluid, options, seed=seed, cancel_event=cancel_event).optimize(boundary)
