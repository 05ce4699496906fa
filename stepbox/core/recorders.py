# stepbox/core/recorders.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional
import numpy as np
import torch


@dataclass(frozen=True)
class Sample:
    """Una muestra de Scope: paso k, tiempo t, id del Scope y valor observado (B,1)."""
    step: int
    t: float
    scope_id: int
    value: torch.Tensor


class Trace:
    """
    Secuencia append-only de muestras de todos los Scope, en orden de paso
    (y, dentro de un paso, en orden de evaluación). Se vacía al empezar cada run.
    """

    def __init__(self):
        self._samples: List[Sample] = []

    # --------- escritura (solo Simulator) ---------
    def append(self, sample: Sample):
        self._samples.append(sample)

    def clear(self):
        self._samples.clear()

    def truncate(self, n: int):
        """Descarta las muestras a partir de la n-ésima (restaurar checkpoints)."""
        del self._samples[int(n):]

    # --------- lectura ---------
    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[Sample]:
        return iter(self._samples)

    def __getitem__(self, i) -> Sample:
        return self._samples[i]

    @property
    def samples(self) -> List[Sample]:
        return list(self._samples)

    def scope_ids(self) -> List[int]:
        return sorted({s.scope_id for s in self._samples})

    def _select(self, scope_id: Optional[int]) -> List[Sample]:
        if scope_id is None:
            return self._samples
        return [s for s in self._samples if s.scope_id == scope_id]

    def values(self, scope_id: Optional[int] = None) -> List[float]:
        """
        Valores como floats (requiere batch 1). Sin scope_id: todas las muestras en
        orden de grabación; con varios Scope quedan intercaladas por paso.
        """
        out = []
        for s in self._select(scope_id):
            if s.value.numel() != 1:
                raise ValueError(
                    f"Trace.values: batch={s.value.shape[0]} > 1; usa series() para obtener (T,B,1)."
                )
            out.append(float(s.value.reshape(-1)[0].item()))
        return out

    def times(self, scope_id: Optional[int] = None) -> List[float]:
        return [s.t for s in self._select(scope_id)]

    def series(self, scope_id: int) -> torch.Tensor:
        """Apila las muestras de un Scope en un tensor (T,B,1). Conserva autograd."""
        sel = self._select(scope_id)
        if not sel:
            raise KeyError(f"Trace: no hay muestras del Scope {scope_id}.")
        return torch.stack([s.value for s in sel], dim=0)

    def stacked(self) -> Dict[str, np.ndarray]:
        """{'scope<id>': (T,B,1), 't': (T,)} como arrays numpy (se detachean)."""
        out: Dict[str, np.ndarray] = {}
        ids = self.scope_ids()
        for sid in ids:
            out[f"scope{sid}"] = self.series(sid).detach().to("cpu").numpy()
        if ids:
            out["t"] = np.asarray(self.times(ids[0]), dtype=np.float64)
        return out


class OutputRecorder:
    """
    Graba en memoria las salidas de los componentes seleccionados en cada paso.
    Se pasa a Simulator.simulate(recorder=...), que llama on_step(t, outputs, states).

    - results: dict id -> List[Tensor(B,1)]
    - times: List[float] (instante al inicio de cada paso)
    """

    def __init__(self, components: Optional[List[int]] = None, *, store_time: bool = True,
                 detach_to_cpu: bool = True):
        self.components = None if components is None else [int(c) for c in components]
        self.store_time = bool(store_time)
        self.detach_to_cpu = bool(detach_to_cpu)
        self.results: Dict[int, List[torch.Tensor]] = {}
        self.times: List[float] = []

    def _prep_tensor(self, t: torch.Tensor) -> torch.Tensor:
        if self.detach_to_cpu:
            return t.detach().to("cpu")
        return t

    def on_step(self, t: float, outputs: Mapping[int, torch.Tensor], states: Mapping[int, object]):
        ids = self.components if self.components is not None else sorted(outputs.keys())
        for cid in ids:
            y = outputs.get(cid)
            if y is None:
                continue  # Scope o componente eliminado
            self.results.setdefault(cid, []).append(self._prep_tensor(y))
        if self.store_time:
            self.times.append(float(t))

    def stacked(self) -> Dict[str, np.ndarray]:
        out: Dict[str, np.ndarray] = {}
        for cid, lst in self.results.items():
            out[str(cid)] = torch.stack(lst, dim=0).detach().cpu().numpy()  # (T,B,1)
        if self.store_time:
            out["t"] = np.asarray(self.times, dtype=np.float64)
        return out
