"""
计算引擎的配置项。

求解器的收敛阈值、迭代上限等属于内部默认值；寻优算法的种群规模、
最大代数和压力步长由外部提供，必须为正。配置文件为 JSON：

    {
        "solver": {"tolerance": 0.001, "max_iterations": 25},
        "optimization": {"population_size": 30, "max_generations": 100, "step_size": 1000}
    }
"""
import json
import logging
import os
from dataclasses import dataclass, fields
from typing import Tuple

logger = logging.getLogger(__name__)


@dataclass
class SolverOptions:
    tolerance: float = 1e-3          # 管道流量最大相对变化的收敛阈值
    max_iterations: int = 25         # 首轮求解之后的迭代上限，最多求解 max_iterations + 1 次
    min_flow: float = 0.2            # 低于该体积流量 (m³/min) 视为管段停滞，提前终止迭代
    initial_flow: float = 1.0        # 管道质量流量初值 (kg/s)
    friction_tolerance: float = 1e-6
    friction_max_iterations: int = 1000

    def __post_init__(self):
        for name in ("tolerance", "max_iterations", "initial_flow",
                     "friction_tolerance", "friction_max_iterations"):
            if getattr(self, name) <= 0:
                raise ValueError(f"求解器配置项 '{name}' 必须为正数")
        if self.min_flow < 0:
            raise ValueError("求解器配置项 'min_flow' 不能为负")


@dataclass
class OptimizationOptions:
    population_size: int = 30
    max_generations: int = 100
    step_size: float = 1000.0        # 压力寻优步长 (Pa)
    lower_offset: float = 50000.0    # 寻优下界 = 当前压力 - lower_offset
    upper_offset: float = 10000.0    # 寻优上界 = 当前压力 + upper_offset
    near_fraction: float = 0.2       # 初始解附近个体的扰动幅度，占搜索区间的比例
    stall_limit: int = 200           # 连续无改进代数达到该值时提前终止
    power_weight: float = 0.7
    efficiency_weight: float = 200.0

    def __post_init__(self):
        for name in ("population_size", "max_generations", "step_size", "stall_limit"):
            if getattr(self, name) <= 0:
                raise ValueError(f"寻优配置项 '{name}' 必须为正数")
        if self.lower_offset < 0 or self.upper_offset < 0:
            raise ValueError("寻优区间偏移量不能为负")


def _pick(cls, section: dict):
    known = {f.name for f in fields(cls)}
    unknown = set(section) - known
    if unknown:
        logger.warning("忽略未知的配置项: %s", ", ".join(sorted(unknown)))
    return cls(**{k: v for k, v in section.items() if k in known})


def load_options(path: str) -> Tuple[SolverOptions, OptimizationOptions]:
    """从 JSON 配置文件读取求解器与寻优配置；文件不存在时使用默认值。"""
    if not os.path.exists(path):
        logger.info("配置文件 %s 不存在，使用默认配置", path)
        return SolverOptions(), OptimizationOptions()

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    solver = _pick(SolverOptions, data.get("solver", {}))
    optimization = _pick(OptimizationOptions, data.get("optimization", {}))
    logger.info(
        "已加载配置: 种群规模=%d, 最大代数=%d, 步长=%.1f Pa",
        optimization.population_size, optimization.max_generations, optimization.step_size,
    )
    return solver, optimization
