from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple


class DataError(ValueError):
    """输入数据缺失或格式错误：在求解开始前即可发现，整个请求不再重试。"""


def _required(data: dict, key: str, owner: str):
    value = data.get(key)
    if value is None or value == "":
        raise DataError(f"组件 '{owner}' 中必需的属性 '{key}' 缺失或为空")
    return value


def _required_float(data: dict, key: str, owner: str) -> float:
    value = _required(data, key, owner)
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise DataError(f"组件 '{owner}' 的属性 '{key}' 无法转换为数值: {value!r}") from exc


def _direction(data: dict, owner: str) -> int:
    value = int(_required_float(data, "flow_direction", owner))
    if value not in (1, -1):
        raise DataError(f"组件 '{owner}' 的流向只能是 1 (A->B) 或 -1 (B->A)，实际为 {value}")
    return value


class StraightSection:
    """复合管道中的一个直管段。长度与内径单位为 m，绝对粗糙度单位为 mm。"""

    def __init__(self, data: dict, owner: str = ""):
        self.length = _required_float(data, "length", owner)
        self.diameter = _required_float(data, "diameter", owner)
        self.roughness = float(data.get("roughness", 0.1) or 0.1)

        if self.length < 0 or self.diameter <= 0:
            raise DataError(f"管道 '{owner}' 的直管段长度或内径不合法")


class BendSection:
    """复合管道中一类相同规格的弯头。"""

    def __init__(self, data: dict, owner: str = ""):
        self.quantity = int(_required_float(data, "quantity", owner))
        self.angle = _required_float(data, "angle", owner)  # 度
        self.radius_ratio = float(data.get("radius_ratio", 1.5) or 1.5)  # R/D


class CompositePipe:
    """
    复合管道：连接两个节点的边，由若干直管段和弯头组成，是压力损失的主要载体。
    flow_direction 为约定流向：1 表示 A->B，-1 表示 B->A。
    """

    def __init__(self, data: dict):
        self.id = str(_required(data, "id", "CompositePipe"))
        self.junction_a = str(_required(data, "junction_a", self.id))
        self.junction_b = str(_required(data, "junction_b", self.id))
        self.flow_direction = _direction(data, self.id)

        straight = data.get("straight_sections") or []
        if not straight:
            raise DataError(f"管道 '{self.id}' 中必需的直管段列表缺失或为空")
        self.straight_sections = [StraightSection(d, self.id) for d in straight]
        self.bend_sections = [BendSection(d, self.id) for d in data.get("bend_sections") or []]

    @property
    def main_diameter(self) -> float:
        # 流速、雷诺数和弯头当量长度均以首个直管段的内径为准
        return self.straight_sections[0].diameter

    @property
    def main_roughness(self) -> float:
        return self.straight_sections[0].roughness


class Compressor:
    """单台压缩机：阀门全开时的最大流量 (m³/min) 及允许的最低开度 (0~1)。"""

    def __init__(self, data: dict, owner: str = ""):
        self.index = int(_required_float(data, "index", owner))
        self.max_flow = _required_float(data, "max_flow", owner)
        self.min_degree = _required_float(data, "min_degree", owner)

        if self.max_flow <= 0 or not 0.0 <= self.min_degree <= 1.0:
            raise DataError(f"空压站 '{owner}' 中压缩机 {self.index} 的最大流量或最低开度不合法")


class CompressorStation:
    """
    空压站（气源节点）。pipe 为与之相连的管道编号，pressure 为出口压力边界 (Pa)。
    power_coefficients 可选，对应功率模型 power = c1*p*1e-5 + c2*q + c3。
    """

    def __init__(self, data: dict):
        self.id = str(_required(data, "id", "CompressorStation"))
        self.name = str(data.get("name", self.id))
        self.pipe = str(_required(data, "pipe", self.id))
        self.pressure = _required_float(data, "pressure", self.id)

        compressors = data.get("compressors") or []
        if not compressors:
            raise DataError(f"空压站 '{self.id}' 中必需的压缩机列表缺失或为空")
        self.compressors = [Compressor(d, self.id) for d in compressors]

        coefficients = data.get("power_coefficients")
        self.power_coefficients: Optional[Tuple[float, float, float]] = None
        if coefficients is not None:
            if len(coefficients) != 3:
                raise DataError(f"空压站 '{self.id}' 的功率系数必须是 3 个数值")
            self.power_coefficients = tuple(float(c) for c in coefficients)


class UserSide:
    """用气端（汇节点）：固定的取气流量 (m³/min) 与最低允许压力 (Pa)。"""

    def __init__(self, data: dict):
        self.id = str(_required(data, "id", "UserSide"))
        self.name = str(data.get("name", self.id))
        self.pipe = str(_required(data, "pipe", self.id))
        self.flow = _required_float(data, "flow", self.id)
        self.min_pressure = _required_float(data, "min_pressure", self.id)


class TeeJunction:
    def __init__(self, data: dict):
        self.id = str(_required(data, "id", "TeeJunction"))
        self.junction_a = str(_required(data, "junction_a", self.id))
        self.junction_b = str(_required(data, "junction_b", self.id))
        self.junction_c = str(_required(data, "junction_c", self.id))


class Fitting:
    """
    管件节点的公共部分。junction_a / junction_b 为两侧管道编号，
    管件附加的阻力项计入 junction_a 所指的管道。
    """

    kind = "fitting"

    def __init__(self, data: dict):
        self.id = str(_required(data, "id", type(self).__name__))
        self.junction_a = str(_required(data, "junction_a", self.id))
        self.junction_b = str(_required(data, "junction_b", self.id))


class Valve(Fitting):
    """普通阀门，按闸阀阻力系数计算附加阻力。"""

    kind = "valve"

    def __init__(self, data: dict):
        super().__init__(data)
        self.flow_direction = _direction(data, self.id)
        self.diameter = _required_float(data, "diameter", self.id)
        if self.diameter <= 0:
            raise DataError(f"阀门 '{self.id}' 的直径必须为正")


class Reducer(Fitting):
    kind = "reducer"

    def __init__(self, data: dict):
        super().__init__(data)
        self.diameter_a = _required_float(data, "diameter_a", self.id)
        self.diameter_b = _required_float(data, "diameter_b", self.id)
        self.angle = _required_float(data, "angle", self.id)  # 度
        if self.diameter_a <= 0 or self.diameter_b <= 0:
            raise DataError(f"变径 '{self.id}' 的两端直径必须为正")


class LimitFlowValve(Fitting):
    """限流阀：强制所在管道的流量趋近设定值 set_flow (m³/min)。"""

    kind = "limit_flow"

    def __init__(self, data: dict):
        super().__init__(data)
        self.flow_direction = _direction(data, self.id)
        self.set_flow = _required_float(data, "set_flow", self.id)
        if self.set_flow == 0:
            raise DataError(f"限流阀 '{self.id}' 的设定流量不能为 0")


class LimitDropValve(Fitting):
    """恒压降阀：在管道原有阻力上叠加设定压降 set_drop (Pa) 对应的阻力。"""

    kind = "limit_drop"

    def __init__(self, data: dict):
        super().__init__(data)
        self.flow_direction = _direction(data, self.id)
        self.set_drop = _required_float(data, "set_drop", self.id)


class LimitPressureValve(Fitting):
    """限压阀：限制阀后压力不超过 set_pressure (Pa)。"""

    kind = "limit_pressure"

    def __init__(self, data: dict):
        super().__init__(data)
        self.flow_direction = _direction(data, self.id)
        self.set_pressure = _required_float(data, "set_pressure", self.id)


@dataclass(frozen=True)
class Boundary:
    """
    一次计算的边界条件：各空压站出口压力 (Pa) 与各用户取气流量 (m³/min)，
    顺序分别与 Network.stations / Network.users 一致。
    """

    station_pressures: Tuple[float, ...]
    user_flows: Tuple[float, ...]

    def with_station_pressures(self, pressures: Sequence[float]) -> "Boundary":
        return replace(self, station_pressures=tuple(float(p) for p in pressures))

    def with_user_flows(self, flows: Sequence[float]) -> "Boundary":
        return replace(self, user_flows=tuple(float(q) for q in flows))


class Network:
    """
    整个管网系统的静态描述：流体编号、温度 (K) 以及全部组件。
    由外部解码器从交换格式转换为 dict 后构造，计算过程中只读。
    """

    def __init__(self, data: dict):
        self.fluid_number = int(_required_float(data, "fluid_number", "Network"))
        self.temperature = _required_float(data, "temperature", "Network")
        if self.temperature <= 0:
            raise DataError("系统温度必须为正的开尔文温度")

        self.stations = [CompressorStation(d) for d in data.get("stations") or []]
        self.users = [UserSide(d) for d in data.get("users") or []]
        self.pipes = [CompositePipe(d) for d in data.get("pipes") or []]
        self.tees = [TeeJunction(d) for d in data.get("tees") or []]
        self.valves = [Valve(d) for d in data.get("valves") or []]
        self.reducers = [Reducer(d) for d in data.get("reducers") or []]
        self.limit_flow_valves = [LimitFlowValve(d) for d in data.get("limit_flow_valves") or []]
        self.limit_drop_valves = [LimitDropValve(d) for d in data.get("limit_drop_valves") or []]
        self.limit_pressure_valves = [
            LimitPressureValve(d) for d in data.get("limit_pressure_valves") or []
        ]

        if not self.stations:
            raise DataError("管网中没有配置空压站")
        if not self.pipes:
            raise DataError("管网中没有管道")

    @property
    def fittings(self) -> List[Fitting]:
        return (
            self.valves
            + self.reducers
            + self.limit_flow_valves
            + self.limit_drop_valves
            + self.limit_pressure_valves
        )

    def boundary(self) -> Boundary:
        """以组件上的初始设定构造边界条件。"""
        return Boundary(
            station_pressures=tuple(s.pressure for s in self.stations),
            user_flows=tuple(u.flow for u in self.users),
        )

    def user_index(self) -> Dict[str, int]:
        return {u.id: i for i, u in enumerate(self.users)}
