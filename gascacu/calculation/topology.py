import logging
from typing import Dict, List, Tuple

import numpy as np

from .models import DataError, Network

logger = logging.getLogger(__name__)


class NetworkGraph:
    """
    网络拓扑类：负责将组件列表转换为平差计算所需的图结构。

    - 节点顺序：三通、各类阀门与变径、用户端，最后是空压站（气源节点排在末尾）。
    - 管道顺序：与空压站相连的管道移到末尾，顺序与空压站一致。
    - 关联矩阵 A (节点 x 管道)：每列在约定流向的起点处为 -1、终点处为 +1。
    """

    def __init__(self, network: Network):
        self.network = network

        # 映射表: 组件编号 -> 矩阵索引
        self.node_map: Dict[str, int] = {}
        self.pipe_map: Dict[str, int] = {}

        self.pipes = []                                # 按计算顺序排列的管道对象
        self.incidence = np.zeros((0, 0))
        self.edge_nodes: List[Tuple[int, int]] = []    # 每条管道的 (起点, 终点)
        self.source_nodes: List[int] = []              # 各空压站的节点索引
        self.source_edges: List[int] = []              # 各空压站相连管道的索引
        self.user_nodes: List[int] = []
        self.user_edges: List[int] = []

    @property
    def node_count(self) -> int:
        return len(self.node_map)

    @property
    def edge_count(self) -> int:
        return len(self.pipes)

    @property
    def source_count(self) -> int:
        return len(self.network.stations)

    @property
    def free_count(self) -> int:
        """非气源节点的数量，即线性方程组的阶数。"""
        return self.node_count - self.source_count

    def build(self) -> "NetworkGraph":
        """构建拓扑关系并完成索引分配，返回自身以便链式调用。"""
        net = self.network

        # 1. 节点索引分配
        ordered = (
            [t.id for t in net.tees]
            + [f.id for f in net.fittings]
            + [u.id for u in net.users]
            + [s.id for s in net.stations]
        )
        for name in ordered:
            if name in self.node_map:
                raise DataError(f"节点编号重复: '{name}'")
            self.node_map[name] = len(self.node_map)

        # 2. 管道排序：气源管道移到末尾
        by_name = {}
        for pipe in net.pipes:
            if pipe.id in by_name:
                raise DataError(f"管道编号重复: '{pipe.id}'")
            by_name[pipe.id] = pipe

        station_pipes = []
        for station in net.stations:
            if station.pipe not in by_name:
                raise DataError(f"空压站 '{station.id}' 连接的管道 '{station.pipe}' 不存在")
            if station.pipe in station_pipes:
                raise DataError(f"管道 '{station.pipe}' 同时连接了多个空压站")
            station_pipes.append(station.pipe)

        self.pipes = [p for p in net.pipes if p.id not in station_pipes]
        self.pipes += [by_name[name] for name in station_pipes]
        self.pipe_map = {p.id: i for i, p in enumerate(self.pipes)}

        # 3. 关联矩阵与管道端点
        n, m = self.node_count, self.edge_count
        self.incidence = np.zeros((n, m))
        self.edge_nodes = []
        for i, pipe in enumerate(self.pipes):
            a = self._node(pipe.junction_a, pipe.id)
            b = self._node(pipe.junction_b, pipe.id)
            if a == b:
                raise DataError(f"管道 '{pipe.id}' 的两端连接到同一节点 '{pipe.junction_a}'")
            start, end = (a, b) if pipe.flow_direction == 1 else (b, a)
            self.incidence[start, i] = -1.0
            self.incidence[end, i] = 1.0
            self.edge_nodes.append((start, end))

        # 4. 气源、用户与管件引用的管道
        self.source_nodes = [self.node_map[s.id] for s in net.stations]
        self.source_edges = [self.pipe_map[name] for name in station_pipes]
        for station, node, edge in zip(net.stations, self.source_nodes, self.source_edges):
            if node not in self.edge_nodes[edge]:
                raise DataError(f"空压站 '{station.id}' 与其管道 '{station.pipe}' 并不相连")

        self.user_nodes = [self.node_map[u.id] for u in net.users]
        self.user_edges = [self._edge(u.pipe, u.id) for u in net.users]
        for fitting in net.fittings:
            self._edge(fitting.junction_a, fitting.id)
        for tee in net.tees:
            for name in (tee.junction_a, tee.junction_b, tee.junction_c):
                self._edge(name, tee.id)

        self.validate()
        logger.debug(
            "拓扑构建完成: 节点 %d 个 (气源 %d 个), 管道 %d 条",
            n, self.source_count, m,
        )
        return self

    def validate(self):
        """检查关联矩阵的维度与每列的符号结构，不一致时抛出 DataError。"""
        n, m = self.node_count, self.edge_count
        if self.incidence.shape != (n, m):
            raise DataError(f"关联矩阵维度 {self.incidence.shape} 与节点/管道数 ({n}, {m}) 不一致")
        if len(self.edge_nodes) != m:
            raise DataError("管道端点列表长度与管道数不一致")
        if self.free_count <= 0:
            raise DataError("管网中没有非气源节点")

        for j, (start, end) in enumerate(self.edge_nodes):
            column = self.incidence[:, j]
            if (np.count_nonzero(column) != 2
                    or column[start] != -1.0 or column[end] != 1.0):
                raise DataError(f"关联矩阵第 {j} 列必须恰有一个 +1 和一个 -1")

        # 气源节点必须排在末尾
        expected = list(range(self.free_count, n))
        if self.source_nodes != expected:
            raise DataError("空压站节点必须位于节点序列的末尾")

    def _node(self, name: str, owner: str) -> int:
        try:
            return self.node_map[name]
        except KeyError:
            raise DataError(f"组件 '{owner}' 引用的节点 '{name}' 不存在") from None

    def _edge(self, name: str, owner: str) -> int:
        try:
            return self.pipe_map[name]
        except KeyError:
            raise DataError(f"组件 '{owner}' 引用的管道 '{name}' 不存在") from None
