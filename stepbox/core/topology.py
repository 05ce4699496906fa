# stepbox/core/topology.py
from __future__ import annotations
from typing import Dict, List, Tuple, Set


class SignalGraph:
    """
    Grafo dirigido (multigrafo) entre ids de componentes.
    Arista src -> dst: la salida de src alimenta la entrada de dst.
    Una misma pareja puede repetirse; cada repetición suma una vez.
    """
    def __init__(self):
        self.succ: Dict[int, List[int]] = {}
        self.pred: Dict[int, List[int]] = {}
        self._edges: List[Tuple[int, int]] = []

    # ---- nodos ----
    def add_node(self, n: int):
        self.succ.setdefault(n, [])
        self.pred.setdefault(n, [])

    def has_node(self, n: int) -> bool:
        return n in self.succ

    def remove_node(self, n: int) -> int:
        """Elimina el nodo y todas sus aristas. Devuelve cuántas aristas se eliminaron."""
        before = len(self._edges)
        self._edges = [(s, d) for (s, d) in self._edges if s != n and d != n]
        del self.succ[n]
        del self.pred[n]
        for lst in self.succ.values():
            lst[:] = [d for d in lst if d != n]
        for lst in self.pred.values():
            lst[:] = [s for s in lst if s != n]
        return before - len(self._edges)

    def nodes(self) -> List[int]:
        return sorted(self.succ.keys())

    def __len__(self) -> int:
        return len(self.succ)

    # ---- aristas ----
    def add_edge(self, src: int, dst: int):
        self.add_node(src); self.add_node(dst)
        self.succ[src].append(dst)
        self.pred[dst].append(src)
        self._edges.append((src, dst))

    def remove_edge(self, src: int, dst: int):
        """Quita UNA aparición de src -> dst."""
        try:
            self._edges.remove((src, dst))
        except ValueError:
            raise KeyError(f"Conexión {src} -> {dst} no existe.") from None
        self.succ[src].remove(dst)
        self.pred[dst].remove(src)

    def edges(self) -> List[Tuple[int, int]]:
        return list(self._edges)

    def predecessors(self, n: int) -> List[int]:
        return list(self.pred[n])

    def successors(self, n: int) -> List[int]:
        return list(self.succ[n])

    def degree(self, n: int) -> int:
        return len(self.succ[n]) + len(self.pred[n])

    # ---- Tarjan SCC (iterativo, pila explícita) ----
    def sccs(self) -> List[List[int]]:
        index = 0
        stack: List[int] = []
        onstack: Set[int] = set()
        idx: Dict[int, int] = {}
        low: Dict[int, int] = {}
        out: List[List[int]] = []

        for root in self.nodes():
            if root in idx:
                continue
            idx[root] = low[root] = index; index += 1
            stack.append(root); onstack.add(root)
            work = [(root, iter(self.succ.get(root, [])))]
            while work:
                v, it = work[-1]
                descended = False
                for w in it:
                    if w not in idx:
                        idx[w] = low[w] = index; index += 1
                        stack.append(w); onstack.add(w)
                        work.append((w, iter(self.succ.get(w, []))))
                        descended = True
                        break
                    elif w in onstack:
                        low[v] = min(low[v], idx[w])
                if descended:
                    continue

                work.pop()
                if work:
                    parent = work[-1][0]
                    low[parent] = min(low[parent], low[v])
                if low[v] == idx[v]:
                    comp = []
                    while True:
                        w = stack.pop()
                        onstack.discard(w)
                        comp.append(w)
                        if w == v:
                            break
                    out.append(sorted(comp))
        return out
