# stepbox/core/config.py
from __future__ import annotations
from dataclasses import dataclass

from .errors import InvalidParameter


@dataclass(frozen=True)
class SimConfig:
    """
    Parámetros de simulación:
      - dt: paso de tiempo fijo (s).
      - steps: número de pasos por defecto de Diagram.run().
      - initial_value: salida inicial de los componentes con estado y valor de
        relleno de Delay durante sus primeros n pasos.
    """
    dt: float = 0.1
    steps: int = 100
    initial_value: float = 0.0

    def __post_init__(self):
        if not float(self.dt) > 0.0:
            raise InvalidParameter(f"SimConfig.dt debe ser > 0, recibido {self.dt!r}.")
        if int(self.steps) != self.steps or self.steps < 0:
            raise InvalidParameter(f"SimConfig.steps debe ser entero >= 0, recibido {self.steps!r}.")
