# stepbox/core/state.py
from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Optional
import torch


class BlockState:
    """
    Registro de estado privado de un componente. Cada tipo de componente usa
    exactamente los campos que necesita; el Simulator guarda un registro por id
    y lo sustituye entero en cada paso (nunca se modifica in-place).
    """

    def clone(self, *, detach: bool = False) -> "BlockState":
        """Copia con los tensores clonados (y opcionalmente sin historia de autograd)."""
        changes = {}
        for f in fields(self):
            v = getattr(self, f.name)
            if isinstance(v, torch.Tensor):
                if detach:
                    v = v.detach()
                changes[f.name] = v.clone()
        return replace(self, **changes)


@dataclass(frozen=True)
class NoState(BlockState):
    pass


@dataclass(frozen=True)
class LastOutput(BlockState):
    value: torch.Tensor


@dataclass(frozen=True)
class LastInput(BlockState):
    # None hasta el primer paso: la regla usa entonces la entrada actual
    value: Optional[torch.Tensor] = None


@dataclass(frozen=True)
class Accumulator(BlockState):
    total: torch.Tensor


@dataclass(frozen=True)
class PIDState(BlockState):
    prev_error: torch.Tensor
    integral: torch.Tensor


@dataclass(frozen=True)
class DelayLine(BlockState):
    """
    Buffer circular de capacidad fija:
      - buffer: (B, n), una columna por paso retenido
      - head: columna que contiene la entrada de hace n pasos
    """
    buffer: torch.Tensor
    head: int = 0
