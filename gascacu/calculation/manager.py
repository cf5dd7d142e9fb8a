import logging
from typing import Dict, Optional

from .config import OptimizationOptions, SolverOptions
from .models import DataError, Network
from .optimizer import PressureOptimizer
from .physics import Fluid
from .projector import ResultProjector, format_summary
from .solver import HydraulicSolver
from .topology import NetworkGraph

logger = logging.getLogger(__name__)


class CalculationManager:
    """
    计算任务入口：由外部解码得到的管网 dict 构造模型与拓扑，按请求类型执行计算。

    - run_structure: 以空压站初始压力直接做一次平差与结果映射。
    - run_static:    以初始压力为起点做压力寻优。
    - run_dynamic:   先按用户编号更新取气流量，再做压力寻优。

    返回 {"success", "msg", "result"}，调用方据此决定是否回写结果。
    """

    def __init__(self, network_data: dict,
                 solver_options: Optional[SolverOptions] = None,
                 optimization_options: Optional[OptimizationOptions] = None,
                 seed: Optional[int] = None):
        self.network_data = network_data
        self.solver_options = solver_options or SolverOptions()
        self.optimization_options = optimization_options or OptimizationOptions()
        self.seed = seed

    def run_structure(self):
        def task(network, graph, fluid):
            state = HydraulicSolver(graph, fluid, self.solver_options).solve(network.boundary())
            results = ResultProjector(graph).project(state)
            logger.info(format_summary(results))
            if not state.feasible:
                return {"success": False, "msg": "平差计算结果不满足约束条件", "result": results}
            return {"success": True, "msg": "计算成功收敛", "result": results}

        return self._run("结构计算", task)

    def run_static(self, cancel_event=None):
        def task(network, graph, fluid):
            return self._optimize(network.boundary(), graph, fluid, cancel_event)

        return self._run("静态寻优", task)

    def run_dynamic(self, user_flow_changes: Dict[str, float], cancel_event=None):
        """user_flow_changes: 用户编号 -> 新的取气流量 (m³/min)，未知的用户编号被忽略。"""
        def task(network, graph, fluid):
            index = network.user_index()
            flows = list(network.boundary().user_flows)
            for user_id, flow in user_flow_changes.items():
                if user_id not in index:
                    logger.warning("未找到用户端 '%s'，忽略该流量变更", user_id)
                    continue
                flows[index[user_id]] = float(flow)
                logger.info("用户端 '%s' 流量更新为 %.3f m³/min", user_id, float(flow))
            boundary = network.boundary().with_user_flows(flows)
            return self._optimize(boundary, graph, fluid, cancel_event)

        return self._run("动态寻优", task)

    # --------------------------------------------------------------
    def _optimize(self, boundary, graph, fluid, cancel_event):
        optimizer = PressureOptimizer(
            graph, fluid, self.optimization_options,
            solver_options=self.solver_options, seed=self.seed, cancel_event=cancel_event,
        )
        outcome = optimizer.optimize(boundary)
        logger.info(format_summary(outcome.results))
        logger.info(
            "寻优结束: %s, 代数 %d, 评价次数 %d, 适应度 %.4f (初始 %.4f)",
            outcome.outcome.value, outcome.generations, optimizer.evaluations,
            outcome.fitness, outcome.baseline_fitness,
        )
        if not outcome.state.feasible:
            return {"success": False, "msg": "初始压力下管网不满足约束条件，寻优未找到可行解", "result": outcome}
        return {"success": True, "msg": f"寻优完成: {outcome.outcome.value}", "result": outcome}

    def _run(self, title, task):
        logger.info(">>> 计算任务启动: %s", title)
        try:
            network = Network(self.network_data)
            logger.info(
                "模型实例化完成: 空压站 %d 个, 用户 %d 个, 管道 %d 条, 三通 %d 个, 管件 %d 个",
                len(network.stations), len(network.users), len(network.pipes),
                len(network.tees), len(network.fittings),
            )
            graph = NetworkGraph(network).build()
            fluid = Fluid(network.fluid_number, network.temperature)
            logger.info("流体物性: %s, rho_0=%.3f kg/m³, mu=%.2f µPa·s", fluid.name, fluid.rho, fluid.mu)
            return task(network, graph, fluid)
        except DataError as e:
            logger.error("输入数据不合法: %s", e)
            return {"success": False, "msg": f"输入数据不合法: {e}", "result": None}
        except Exception as e:
            logger.exception("计算过程发生异常")
            return {"success": False, "msg": f"计算过程发生异常: {e}", "result": None}
