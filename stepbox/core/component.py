# stepbox/core/component.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union
import torch
import torch.nn as nn

from .errors import InvalidParameter
from .state import BlockState


@dataclass(frozen=True)
class Position:
    """Posición 2D en el lienzo del editor. El motor nunca la lee."""
    x: float = 0.0
    y: float = 0.0

    @classmethod
    def of(cls, value: Union["Position", Tuple[float, float], None]) -> "Position":
        if value is None:
            return cls()
        if isinstance(value, Position):
            return value
        x, y = value
        return cls(float(x), float(y))


class ComponentKind(nn.Module, ABC):
    """
    Variante de componente: parámetros fijos + regla de actualización.

    Conceptos
    ---------
    Señales
      - Cada señal es un tensor (B, 1): B copias independientes del diagrama.
      - La entrada `u` de un componente es la suma de las salidas del paso
        anterior de todos sus productores.

    Estado
      - init_state(B, ...) -> BlockState (registro propio del tipo).
      - initial_output(B, ...) -> (B,1) o None: valor que ven los consumidores
        en el paso 0, antes de que el componente haya producido nada.

    Parámetros (misma API que el resto de la librería)
      - declare_param(name, value, trainable=False)
          * escalar -> (1,1); vector (B,) -> (B,1); 2D debe ser (B,1).
      - set_param / get_param / make_param_trainable

    Regla (a implementar en cada variante)
      - update(state, u, dt, t) -> (new_state, y); y=None si no tiene salida.
      - label: texto corto para el editor.

    Los métodos abstractos obligan a que toda variante cubra todos los puntos
    de despacho: una variante incompleta no se puede instanciar.
    """

    # True si el componente puede romper un lazo de realimentación
    holds_state: bool = True
    # True si el componente graba su entrada en la traza (Scope)
    records: bool = False

    def __init__(self):
        super().__init__()
        # name -> atributo donde vive el tensor (buffer o Parameter)
        self._param_attr: Dict[str, str] = {}
        self._param_trainable: Dict[str, bool] = {}

    # ===================== Regla (subclases) =====================
    @abstractmethod
    def init_state(self, batch_size: int, *, device=None, dtype=None, initial_value: float = 0.0) -> BlockState:
        ...

    @abstractmethod
    def initial_output(self, batch_size: int, *, device=None, dtype=None,
                       initial_value: float = 0.0) -> Optional[torch.Tensor]:
        ...

    @abstractmethod
    def update(self, state: BlockState, u: torch.Tensor, dt: float, t: float) -> Tuple[BlockState, Optional[torch.Tensor]]:
        ...

    @property
    @abstractmethod
    def label(self) -> str:
        ...

    # ===================== Parámetros =====================
    @staticmethod
    def _normalize_param_shape(value, *, dtype: Optional[torch.dtype] = None) -> torch.Tensor:
        """
        Normaliza a 2D (B, 1):
          - escalar -> (1,1)
          - vector  -> (B,1)
          - 2D      -> (B,1)
        """
        if isinstance(value, torch.Tensor):
            t = value
        else:
            try:
                t = torch.as_tensor(value, dtype=dtype or torch.get_default_dtype())
            except (TypeError, ValueError, RuntimeError) as e:
                raise InvalidParameter(f"Parámetro no numérico: {value!r}") from e
        if not t.is_floating_point():
            t = t.to(dtype or torch.get_default_dtype())
        if t.ndim == 0:
            t = t.reshape(1, 1)
        elif t.ndim == 1:
            t = t.unsqueeze(1)
        elif t.ndim == 2 and t.shape[1] == 1:
            pass
        else:
            raise InvalidParameter(f"Parámetro debe ser escalar, vector (B,) o (B,1). Recibido shape={tuple(t.shape)}")
        return t

    def _set_param_tensor(self, name: str, t: torch.Tensor):
        attr = self._param_attr[name]
        holder = getattr(self, attr, None)
        if isinstance(holder, nn.Parameter):
            holder.data = t.detach().to(device=holder.device, dtype=holder.dtype)
        elif isinstance(holder, torch.Tensor):
            setattr(self, attr, t.detach().clone().to(device=holder.device, dtype=holder.dtype))
        else:
            self.register_buffer(attr, t.detach().clone())

    def declare_param(self, name: str, value, *, trainable: bool = False):
        """
        Declara un parámetro:
          - no entrenable por defecto (buffer).
          - si trainable=True, se crea nn.Parameter.
        """
        if name in self._param_attr:
            raise ValueError(f"Parámetro '{name}' ya declarado.")
        t = self._normalize_param_shape(value)
        attr = f"param_{name}"
        if trainable:
            setattr(self, attr, nn.Parameter(t.clone().detach(), requires_grad=True))
        else:
            self.register_buffer(attr, t.clone().detach())
        self._param_attr[name] = attr
        self._param_trainable[name] = bool(trainable)
        return self

    def set_param(self, name: str, value):
        if name not in self._param_attr:
            raise KeyError(f"Parámetro '{name}' no existe. Decláralo antes con declare_param().")
        self._set_param_tensor(name, self._normalize_param_shape(value))
        return self

    def get_param(self, name: str) -> torch.Tensor:
        """Devuelve el tensor (B,1) tal y como está almacenado (B puede ser 1 o el batch)."""
        if name not in self._param_attr:
            raise KeyError(f"Parámetro '{name}' no existe.")
        return getattr(self, self._param_attr[name])

    def make_param_trainable(self, name: str, trainable: bool = True):
        """
        Convierte el parámetro a entrenable (nn.Parameter) o no entrenable (buffer).
        Conserva el valor actual.
        """
        if name not in self._param_attr:
            raise KeyError(f"Parámetro '{name}' no existe.")
        attr = self._param_attr[name]
        t = getattr(self, attr).detach()
        delattr(self, attr)
        if trainable:
            setattr(self, attr, nn.Parameter(t.clone(), requires_grad=True))
        else:
            self.register_buffer(attr, t.clone())
        self._param_trainable[name] = bool(trainable)
        return self

    def param_names(self):
        return list(self._param_attr.keys())

    def check_batch(self, batch_size: int):
        """Cada parámetro debe tener B ∈ {1, batch_size}."""
        for name in self._param_attr:
            B = self.get_param(name).shape[0]
            if B not in (1, int(batch_size)):
                raise InvalidParameter(
                    f"{self.__class__.__name__}.{name}: batch={B} incompatible con batch_size={batch_size}."
                )

    def extra_repr(self) -> str:
        parts = []
        for name in self._param_attr:
            p = self.get_param(name)
            parts.append(f"{name}={p.item():g}" if p.numel() == 1 else f"{name}=<{tuple(p.shape)}>")
        return ", ".join(parts)

    # ===================== Helpers para subclases =====================
    @staticmethod
    def _full(batch_size: int, value: float, *, device=None, dtype=None) -> torch.Tensor:
        return torch.full((int(batch_size), 1), float(value), device=device,
                          dtype=dtype or torch.get_default_dtype())


@dataclass
class Component:
    """Nodo del diagrama: id estable + variante con parámetros + posición del editor."""
    id: int
    kind: ComponentKind
    position: Position = Position()

    @property
    def label(self) -> str:
        return self.kind.label
