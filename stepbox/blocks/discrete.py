# stepbox/blocks/discrete.py
from __future__ import annotations
import torch

from ..core.component import ComponentKind
from ..core.errors import InvalidParameter
from ..core.state import Accumulator, DelayLine, LastInput, NoState


class _PreviousInputBlock(ComponentKind):
    """Base para bloques cuyo estado es la entrada del paso anterior."""

    def init_state(self, batch_size, *, device=None, dtype=None, initial_value=0.0):
        return LastInput(None)

    def initial_output(self, batch_size, *, device=None, dtype=None, initial_value=0.0):
        return self._full(batch_size, initial_value, device=device, dtype=dtype)

    @staticmethod
    def _previous(state: LastInput, u: torch.Tensor) -> torch.Tensor:
        # primer uso: la entrada anterior es la actual
        return u if state.value is None else state.value


class Difference(_PreviousInputBlock):
    """y = u_k - u_{k-1}. Primer paso: 0."""

    def update(self, state, u, dt, t):
        return LastInput(u), u - self._previous(state, u)

    @property
    def label(self) -> str:
        return "Diff"


class DiscreteDerivative(_PreviousInputBlock):
    """y = (u_k - u_{k-1}) / dt. Primer paso: 0."""

    def update(self, state, u, dt, t):
        return LastInput(u), (u - self._previous(state, u)) / float(dt)

    @property
    def label(self) -> str:
        return "d/dt"


class Memory(_PreviousInputBlock):
    """Retención de un paso: y_k = u_{k-1}. Primer paso: y_0 = u_0."""

    def update(self, state, u, dt, t):
        return LastInput(u), self._previous(state, u)

    @property
    def label(self) -> str:
        return "Memory"


class DiscreteIntegrator(ComponentKind):
    """Euler hacia delante: y_k = y_{k-1} + u_k*dt, con y_{-1} = initial_value."""

    def init_state(self, batch_size, *, device=None, dtype=None, initial_value=0.0):
        return Accumulator(self._full(batch_size, initial_value, device=device, dtype=dtype))

    def initial_output(self, batch_size, *, device=None, dtype=None, initial_value=0.0):
        return self._full(batch_size, initial_value, device=device, dtype=dtype)

    def update(self, state, u, dt, t):
        y = state.total + u * float(dt)
        return Accumulator(y), y

    @property
    def label(self) -> str:
        return "1/z integ"


class Delay(ComponentKind):
    """
    Retardo de n pasos: y_k = u_{k-n}; durante los primeros n pasos y = initial_value.
    Estado: buffer circular (B, n) + índice de cabeza.
      - leer la columna `head` (entrada de hace n pasos)
      - escribir la entrada actual en esa misma columna
      - head <- (head + 1) % n
    n = 0 es la identidad y no guarda estado.
    """
    def __init__(self, steps: int = 1):
        super().__init__()
        try:
            is_int = not isinstance(steps, bool) and int(steps) == steps
        except (TypeError, ValueError):
            is_int = False
        if not is_int:
            raise InvalidParameter(f"Delay: longitud debe ser entera, recibido {steps!r}.")
        if steps < 0:
            raise InvalidParameter(f"Delay: longitud debe ser >= 0, recibido {steps}.")
        self.steps = int(steps)

    @property
    def holds_state(self) -> bool:
        return self.steps > 0

    def init_state(self, batch_size, *, device=None, dtype=None, initial_value=0.0):
        if self.steps == 0:
            return NoState()
        buf = torch.full((int(batch_size), self.steps), float(initial_value), device=device,
                         dtype=dtype or torch.get_default_dtype())
        return DelayLine(buffer=buf, head=0)

    def initial_output(self, batch_size, *, device=None, dtype=None, initial_value=0.0):
        return self._full(batch_size, initial_value, device=device, dtype=dtype)

    def update(self, state, u, dt, t):
        if self.steps == 0:
            return state, u
        h = state.head
        y = state.buffer[:, h:h + 1]
        # index_copy (sin '_') devuelve un tensor nuevo: no rompe autograd ni checkpoints
        idx = torch.tensor([h], device=state.buffer.device)
        buf = state.buffer.index_copy(1, idx, u.to(state.buffer.dtype))
        return DelayLine(buffer=buf, head=(h + 1) % self.steps), y

    def extra_repr(self) -> str:
        return f"steps={self.steps}"

    @property
    def label(self) -> str:
        return f"Delay({self.steps})"
