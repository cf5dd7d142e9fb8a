import math

from .models import BendSection, DataError

REFERENCE_PRESSURE = 101325.0  # 标准大气压 (Pa)
NORMAL_TEMPERATURE = 273.15  # 标准状态温度 (K)
GATE_VALVE_ZETA = 0.2  # 闸阀局部阻力系数


class Fluid:
    """
    气体物性类：管理介质的标准状态密度和随温度变化的动力粘度。
    密度 rho_0 为 0℃、101325 Pa 下的值 (kg/m³)，粘度 mu 单位为 µPa·s。
    """
    GAS_DATABASE = {
        1: {"name": "压缩空气", "rho_0": 1.293, "mu_0": 17.20, "sutherland": 110.4},
        2: {"name": "氮气", "rho_0": 1.250, "mu_0": 17.50, "sutherland": 107.0},
        3: {"name": "氧气", "rho_0": 1.429, "mu_0": 19.20, "sutherland": 125.0},
        4: {"name": "氩气", "rho_0": 1.784, "mu_0": 21.0, "exponent": 0.71},
        5: {"name": "天然气", "rho_0": 0.75, "mu_0": 13.75, "sutherland": 198.0},
        6: {"name": "焦炉煤气", "rho_0": 0.46, "mu_0": 11.6, "exponent": 0.70},
        7: {"name": "高炉煤气", "rho_0": 1.35, "mu_0": 15.79, "exponent": 0.80},
        8: {"name": "转炉煤气", "rho_0": 1.20, "mu_0": 18.0, "exponent": 0.75},
    }

    def __init__(self, number=1, temperature=293.15):
        if number not in self.GAS_DATABASE:
            raise DataError(f"未知的流体编号: {number}")
        self.number = number
        self.temperature = temperature  # 开尔文
        self.name = ""
        self.rho = 0.0
        self.mu = 0.0
        self.update_properties()

    def update_properties(self):
        """
        根据介质和温度更新物性。
        萨瑟兰公式: mu = mu_0 * (T/273.15)^1.5 * (273.15 + S) / (T + S)
        幂律公式:   mu = mu_0 * (T/273.15)^n
        """
        data = self.GAS_DATABASE[self.number]
        self.name = data["name"]
        self.rho = data["rho_0"]

        ratio = self.temperature / NORMAL_TEMPERATURE
        if "sutherland" in data:
            s = data["sutherland"]
            self.mu = data["mu_0"] * ratio ** 1.5 * (NORMAL_TEMPERATURE + s) / (self.temperature + s)
        else:
            self.mu = data["mu_0"] * ratio ** data["exponent"]


def calc_density(rho_0: float, temperature: float, pressure: float) -> float:
    """按理想气体状态方程把标准密度换算到工况密度: rho = rho_0 * (273.15/T) * (p/101325)。"""
    return rho_0 * (NORMAL_TEMPERATURE / temperature) * (pressure / REFERENCE_PRESSURE)


def calc_velocity(mass_flow: float, diameter: float, density: float) -> float:
    """由质量流量 (kg/s) 计算平均流速 (m/s): v = |4Q / (pi * D² * rho)|。"""
    if density == 0:
        return 0.0
    return abs(4.0 * mass_flow / (math.pi * diameter ** 2 * density))


def calc_reynolds(v: float, diameter: float, density: float, mu: float) -> float:
    """
    计算雷诺数: Re = v * D * rho / mu。
    mu 以 µPa·s 给出，故乘以 1e6。
    """
    if mu == 0:
        return math.inf
    return v * diameter * density * 1e6 / mu


def calc_friction_factor(diameter: float, re: float, roughness: float,
                         tol: float = 1e-6, max_iter: int = 1000) -> float:
    """
    计算达西摩阻系数 f。
    采用隐式的湍流公式: 1/sqrt(f) = 1.14 - 2*lg(e/D + 9.35/(Re*sqrt(f)))，
    从 f=0.01 出发做不动点迭代，直至前后两次差值小于 tol 或达到 max_iter。
    roughness 为绝对粗糙度 (mm)。
    """
    if math.isnan(re):
        return math.nan
    if re <= 0:
        return 0.0

    f = 0.01
    for _ in range(max_iter):
        if f <= 0:
            return 0.0
        term = 1.14 - 2.0 * math.log10(roughness / (1000.0 * diameter) + 9.35 / (re * math.sqrt(f)))
        if term == 0:
            return math.inf
        new_f = term ** -2
        if abs(new_f - f) < tol:
            break
        f = new_f
    return f


def _length_resistance(length: float, diameter: float, density: float, f: float) -> float:
    # R = 8f/pi² * L/D^5 / rho，压降 dP = R * Q² (Q 为质量流量)
    if density == 0:
        return math.inf
    return f * 8.0 / math.pi ** 2 * (length / diameter ** 5) / density


def calc_straight_resistance(length: float, diameter: float, density: float, f: float) -> float:
    """直管段的阻力系数。"""
    return _length_resistance(length, diameter, density, f)


def calc_bend_length(diameter: float, angle: float, f: float, radius_ratio: float = 1.5) -> float:
    """单个弯头的当量长度 (m)：90° 弯头取 14D，其余角度按线性修正。"""
    if angle == 90:
        return 14.0 * diameter
    return (angle / 90.0 - 1.0) * (0.25 * math.pi * f * radius_ratio + 0.5 * 14.0 * diameter) + 14.0 * diameter


def calc_bend_resistance(bend: BendSection, diameter: float, density: float, f: float) -> float:
    """一组同规格弯头的阻力系数，按当量长度折算成直管阻力。"""
    length = bend.quantity * calc_bend_length(diameter, bend.angle, f, bend.radius_ratio)
    return _length_resistance(length, diameter, density, f)


def calc_valve_resistance(diameter: float, density: float, zeta: float = GATE_VALVE_ZETA) -> float:
    """阀门附加阻力: R = 8*zeta / (pi² * D^4 * rho)，默认按闸阀取 zeta。"""
    if density == 0:
        return math.inf
    return 8.0 * zeta / (math.pi ** 2 * diameter ** 4 * density)


def calc_reducer_resistance(diameter_a: float, diameter_b: float, angle: float,
                            mass_flow: float, density: float, re: float) -> float:
    """
    变径附加阻力。
    渐扩系数 K1 = 20*y^0.33 / tan(a)^0.75，渐缩系数 K2 = 19 / (y^0.5 * tan(a)^0.75)，
    其中 y = S_b/S_a 为截面比，a 为变径角度。实际流向决定取渐扩还是渐缩系数。
    """
    tan_a = math.tan(math.radians(angle))
    if tan_a <= 0 or re <= 0 or density <= 0 or math.isnan(re):
        return 0.0

    area_a = math.pi * diameter_a ** 2 / 4.0
    area_b = math.pi * diameter_b ** 2 / 4.0
    y = area_b / area_a
    k_expand = 20.0 * y ** 0.33 / tan_a ** 0.75
    k_contract = 19.0 / (y ** 0.5 * tan_a ** 0.75)

    if mass_flow > 0:
        k = k_contract if area_a > area_b else k_expand
    else:
        k = k_expand if area_a > area_b else k_contract

    r = 8.0 * k / (math.pi ** 2 * diameter_b ** 4 * density * re)
    return 0.0 if math.isnan(r) else r


def exergy(flow: float, pressure: float) -> float:
    """气体㶲的近似量: |Q| * ln(p / 101325)。压力非正或任一量为 NaN 时取 0。"""
    if pressure <= 0 or math.isnan(pressure) or math.isnan(flow):
        return 0.0
    return abs(flow) * math.log(pressure / REFERENCE_PRESSURE)
