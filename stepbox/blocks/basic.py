# stepbox/blocks/basic.py
from __future__ import annotations
import torch

from ..core.component import ComponentKind
from ..core.state import NoState


class Step(ComponentKind):
    """Fuente constante: y = 1.0 en todos los pasos, ignora cualquier entrada."""
    holds_state = False

    def init_state(self, batch_size, *, device=None, dtype=None, initial_value=0.0):
        return NoState()

    def initial_output(self, batch_size, *, device=None, dtype=None, initial_value=0.0):
        # los consumidores ven la fuente ya encendida desde el paso 0
        return self._full(batch_size, 1.0, device=device, dtype=dtype)

    def update(self, state, u, dt, t):
        return state, torch.ones_like(u)

    @property
    def label(self) -> str:
        return "Step"


class Scope(ComponentKind):
    """
    Sumidero: no tiene salida. El Simulator graba su entrada (la suma de sus
    productores) en la traza en cada paso.
    """
    holds_state = False
    records = True

    def init_state(self, batch_size, *, device=None, dtype=None, initial_value=0.0):
        return NoState()

    def initial_output(self, batch_size, *, device=None, dtype=None, initial_value=0.0):
        return None

    def update(self, state, u, dt, t):
        return state, None

    @property
    def label(self) -> str:
        return "Scope"
