# stepbox/utils/visualization.py
from __future__ import annotations

import networkx as nx

from stepbox.core.diagram import Diagram
from stepbox.core.errors import CycleDetected


# -------------------------- Exportación para el editor -----------------------

def to_networkx(diagram: Diagram) -> nx.MultiDiGraph:
    """
    Copia de solo lectura del diagrama como nx.MultiDiGraph.
    Nodos = ids con atributos (label, kind, holds_state, x, y); aristas con
    weight=1.0 (reservado para una futura ganancia por conexión). Las
    conexiones repetidas aparecen como aristas paralelas.
    """
    G = nx.MultiDiGraph(name=diagram.name)
    for comp in diagram.components():
        G.add_node(
            comp.id,
            label=comp.label,
            kind=comp.kind.__class__.__name__,
            holds_state=bool(comp.kind.holds_state),
            x=comp.position.x,
            y=comp.position.y,
        )
    for src, dst in diagram.edges():
        G.add_edge(src, dst, weight=1.0)
    return G


# -------------------------- Impresión en consola -----------------------------

def print_component_details(diagram: Diagram, cid: int, level: int = 0):
    indent = "\t" * level
    comp = diagram.component(cid)
    kind = comp.kind
    title = f"[{cid}] {kind.__class__.__name__}"
    print(indent + f"● {title} : {comp.label!r}")
    print(indent + "-" * (len(title) + 2))

    ins = diagram.inputs_of(cid)
    outs = diagram.graph.successors(cid)
    print(indent + f"\t- Inputs:  [{', '.join(str(i) for i in ins)}]")
    print(indent + f"\t- Outputs: [{', '.join(str(o) for o in outs)}]")
    print(indent + f"\t- State:   {'sí' if kind.holds_state else '(none)'}")

    print(indent + "\t- Params:", kind.extra_repr() or "(none)")
    print()


def print_diagram_overview(diagram: Diagram, order: bool = True):
    print(f"Diagrama: {diagram.name}")
    print("=" * (10 + len(diagram.name)))
    for cid in diagram.ids():
        print_component_details(diagram, cid, level=1)
    if order:
        # el orden puede no existir si hay un lazo sin estado
        try:
            seq = diagram.evaluation_order()
        except CycleDetected as e:
            print(f"(nota) Sin orden de evaluación: {e}")
        else:
            print("Orden de evaluación:", " -> ".join(str(i) for i in seq))
