# stepbox/core/scheduler.py
from __future__ import annotations
from typing import Callable, Dict, List, Tuple
import heapq

from .errors import CycleDetected
from .topology import SignalGraph


def ordering_edges(graph: SignalGraph, holds_state: Callable[[int], bool]) -> List[Tuple[int, int]]:
    """
    Aristas que imponen orden dentro de un paso.
    Se descartan las que salen de un componente con estado y vuelven a su propia
    SCC: son las realimentaciones que ese estado rompe. El resto se conservan,
    así que en un DAG todo productor queda antes que sus consumidores.
    """
    comp_of: Dict[int, int] = {}
    for ci, comp in enumerate(graph.sccs()):
        for n in comp:
            comp_of[n] = ci
    kept = []
    for s, d in graph.edges():
        if comp_of[s] == comp_of[d] and holds_state(s):
            continue
        kept.append((s, d))
    return kept


def _find_cycle(nodes: List[int], edges: List[Tuple[int, int]]) -> List[int]:
    adj: Dict[int, List[int]] = {u: [] for u in nodes}
    for u, v in edges:
        if u in adj and v in adj:
            adj[u].append(v)
    color = {u: 0 for u in nodes}  # 0=white,1=gray,2=black

    for root in sorted(nodes):
        if color[root] != 0:
            continue
        # path: nodos grises en orden de visita
        path: List[int] = [root]
        color[root] = 1
        work = [iter(sorted(adj[root]))]
        while work:
            for v in work[-1]:
                if color[v] == 0:
                    color[v] = 1
                    path.append(v)
                    work.append(iter(sorted(adj[v])))
                    break
                if color[v] == 1:
                    return path[path.index(v):] + [v]
            else:
                color[path.pop()] = 2
                work.pop()
    return []


def evaluation_order(graph: SignalGraph, holds_state: Callable[[int], bool]) -> List[int]:
    """
    Orden topológico de visita para un paso (Kahn).
    - Cada nodo aparece exactamente una vez.
    - Empates resueltos por id menor: mismo grafo -> mismo orden.
    - Si queda un ciclo sin componente con estado -> CycleDetected.
    """
    nodes = graph.nodes()
    edges = ordering_edges(graph, holds_state)
    indeg: Dict[int, int] = {n: 0 for n in nodes}
    adj: Dict[int, List[int]] = {n: [] for n in nodes}
    for s, d in edges:
        adj[s].append(d)
        indeg[d] += 1

    ready = [n for n in nodes if indeg[n] == 0]
    heapq.heapify(ready)
    order: List[int] = []
    while ready:
        n = heapq.heappop(ready)
        order.append(n)
        for d in adj[n]:
            indeg[d] -= 1
            if indeg[d] == 0:
                heapq.heappush(ready, d)

    if len(order) != len(nodes):
        done = set(order)
        remaining = [n for n in nodes if n not in done]
        raise CycleDetected(_find_cycle(remaining, edges))
    return order
