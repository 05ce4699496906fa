# stepbox/core/diagram.py
from __future__ import annotations
from typing import Callable, Dict, List, Optional, Tuple, Union
import warnings
import torch
import torch.nn as nn

from .component import Component, ComponentKind, Position
from .config import SimConfig
from .errors import UnknownComponent
from .recorders import Trace
from .scheduler import evaluation_order
from .topology import SignalGraph

PositionLike = Union[Position, Tuple[float, float], None]


class Diagram(nn.Module):
    """
    Diagrama de bloques: componentes con id estable + grafo de señales.
    Es la fachada que usa el editor:
        d = Diagram()
        s = d.add_step(); i = d.add_discrete_integrator(); sc = d.add_scope()
        d.connect(s, i).connect(i, sc)
        trace = d.run(steps=100, dt=0.1)

    Ids: enteros asignados en orden creciente desde 0; nunca se reutilizan,
    ni siquiera tras remove_component().

    Las variantes viven en `self.kinds` (nn.ModuleDict) para que
    `diagram.parameters()` devuelva los parámetros entrenables (p.ej. ganancias PID).

    Precondición: no modificar el diagrama mientras Simulator.simulate() está
    en marcha. Entre llamadas a Simulator.step() sí se puede; `revision`
    cambia con cada mutación y el Simulator rehace su plan.
    """

    def __init__(self, name: str = "diagram"):
        super().__init__()
        self.name = name
        self.kinds = nn.ModuleDict()
        self._components: Dict[int, Component] = {}
        self.graph = SignalGraph()
        self._next_id: int = 0
        self.revision: int = 0

    # ---------------- componentes ----------------
    def add_component(self, kind: ComponentKind, position: PositionLike = None) -> int:
        if not isinstance(kind, ComponentKind):
            raise TypeError(f"add_component: se esperaba ComponentKind, recibido {type(kind).__name__}.")
        cid = self._next_id
        self._next_id += 1
        self._components[cid] = Component(cid, kind, Position.of(position))
        self.kinds[str(cid)] = kind
        self.graph.add_node(cid)
        self.revision += 1
        return cid

    def add_step(self, position: PositionLike = None) -> int:
        from ..blocks.basic import Step
        return self.add_component(Step(), position)

    def add_scope(self, position: PositionLike = None) -> int:
        from ..blocks.basic import Scope
        return self.add_component(Scope(), position)

    def add_transfer_function(self, alpha: float = 0.1, position: PositionLike = None) -> int:
        from ..blocks.control import TransferFunction
        return self.add_component(TransferFunction(alpha=alpha), position)

    def add_pid_controller(self, kp: float, ki: float, kd: float, reference: float = 1.0,
                           position: PositionLike = None) -> int:
        from ..blocks.control import PIDController
        return self.add_component(PIDController(kp=kp, ki=ki, kd=kd, reference=reference), position)

    def add_delay(self, delay_steps: int, position: PositionLike = None) -> int:
        from ..blocks.discrete import Delay
        return self.add_component(Delay(delay_steps), position)

    def add_difference(self, position: PositionLike = None) -> int:
        from ..blocks.discrete import Difference
        return self.add_component(Difference(), position)

    def add_discrete_derivative(self, position: PositionLike = None) -> int:
        from ..blocks.discrete import DiscreteDerivative
        return self.add_component(DiscreteDerivative(), position)

    def add_discrete_integrator(self, position: PositionLike = None) -> int:
        from ..blocks.discrete import DiscreteIntegrator
        return self.add_component(DiscreteIntegrator(), position)

    def add_memory(self, position: PositionLike = None) -> int:
        from ..blocks.discrete import Memory
        return self.add_component(Memory(), position)

    def remove_component(self, cid: int):
        """Elimina el componente y todas sus conexiones. Los demás ids no cambian."""
        self._require(cid)
        n_edges = self.graph.remove_node(cid)
        if n_edges:
            warnings.warn(
                f"remove_component: se eliminan {n_edges} conexiones del componente {cid}.",
                RuntimeWarning,
                stacklevel=2,
            )
        del self._components[cid]
        del self.kinds[str(cid)]
        self.revision += 1
        return self

    def _require(self, cid):
        if cid not in self._components:
            raise UnknownComponent(cid)

    def component(self, cid: int) -> Component:
        self._require(cid)
        return self._components[cid]

    def kind(self, cid: int) -> ComponentKind:
        return self.component(cid).kind

    def components(self) -> List[Component]:
        return [self._components[i] for i in sorted(self._components)]

    def ids(self) -> List[int]:
        return sorted(self._components)

    def __contains__(self, cid) -> bool:
        return cid in self._components

    def __len__(self) -> int:
        return len(self._components)

    def holds_state(self, cid: int) -> bool:
        return bool(self.kind(cid).holds_state)

    # ---------------- conexiones ----------------
    def connect(self, src: int, dst: int):
        """
        Conecta la salida de `src` a la entrada de `dst`.
        Ids desconocidos -> UnknownComponent (el grafo no cambia).
        Varias conexiones hacia el mismo destino se suman.
        """
        self._require(src); self._require(dst)
        if self._components[src].kind.records:
            warnings.warn(
                f"connect: el componente {src} es un Scope y no tiene salida; {dst} recibirá 0.",
                RuntimeWarning,
                stacklevel=2,
            )
        self.graph.add_edge(src, dst)
        self.revision += 1
        return self

    def connect_from_strings(self, *arrows: str):
        """connect_from_strings("0 -> 1", "1 -> 2")"""
        for arrow in arrows:
            left, right = arrow.split("->")
            self.connect(int(left.strip()), int(right.strip()))
        return self

    def disconnect(self, src: int, dst: int):
        """Quita una aparición de la conexión src -> dst (KeyError si no existe)."""
        self._require(src); self._require(dst)
        self.graph.remove_edge(src, dst)
        self.revision += 1
        return self

    def inputs_of(self, cid: int) -> List[int]:
        """Productores conectados a `cid` (multiconjunto, en orden de conexión)."""
        self._require(cid)
        return self.graph.predecessors(cid)

    def edges(self) -> List[Tuple[int, int]]:
        return self.graph.edges()

    # ---------------- planificación y ejecución ----------------
    def evaluation_order(self) -> List[int]:
        """Orden de visita de un paso. CycleDetected si hay un lazo sin estado."""
        return evaluation_order(self.graph, self.holds_state)

    def run(
        self,
        steps: Optional[int] = None,
        dt: Optional[float] = None,
        *,
        config: Optional[SimConfig] = None,
        batch_size: int = 1,
        device: Optional[torch.device] = None,
        dtype: Optional[torch.dtype] = None,
        on_sample: Optional[Callable] = None,
        recorder: Optional[object] = None,
        strict_numerics: bool = False,
        detach: bool = False,
    ) -> Trace:
        """
        Ejecuta una simulación completa desde el estado inicial y devuelve la traza.
        Por defecto (SimConfig): 100 pasos de dt=0.1.
        """
        from .simulator import Simulator
        sim = Simulator(self, config=config, batch_size=batch_size, device=device, dtype=dtype,
                        strict_numerics=strict_numerics, detach=detach)
        return sim.simulate(steps=steps, dt=dt, on_sample=on_sample, recorder=recorder)
