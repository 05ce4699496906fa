# stepbox/core/errors.py
from __future__ import annotations
from typing import List, Optional


class StepBoxError(Exception):
    """Base de todos los errores propios de StepBox."""


class CycleDetected(StepBoxError, RuntimeError):
    """
    El planificador no puede ordenar el grafo: hay un ciclo que no pasa por
    ningún componente con estado. `cycle` contiene los ids implicados
    (el primero se repite al final, p.ej. [3, 5, 3]).
    """
    def __init__(self, cycle: Optional[List[int]] = None):
        self.cycle: List[int] = list(cycle or [])
        txt = " -> ".join(str(i) for i in self.cycle) if self.cycle else "?"
        super().__init__(
            f"Ciclo sin componente con estado ({txt}). "
            f"Añade un Memory o Delay(n>0) en el lazo de realimentación."
        )


class UnknownComponent(StepBoxError, KeyError):
    """Referencia a un id de componente que no existe en el diagrama."""
    def __init__(self, component_id):
        self.component_id = component_id
        super().__init__(f"Componente {component_id!r} no existe.")

    def __str__(self) -> str:
        # KeyError.__str__ pone comillas alrededor del mensaje
        return str(self.args[0])


class InvalidParameter(StepBoxError, ValueError):
    """Parámetro rechazado al construir el componente o la simulación."""
