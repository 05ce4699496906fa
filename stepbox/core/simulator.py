# stepbox/core/simulator.py
from __future__ import annotations
from typing import Callable, Dict, List, Optional

import time
import torch

from .component import ComponentKind
from .config import SimConfig
from .diagram import Diagram
from .errors import InvalidParameter, UnknownComponent
from .recorders import Sample, Trace
from .state import BlockState
from ..utils.helpers import check_finite, to_device_dtype


class Simulator:
    """
    Bucle de pasos fijos sobre un Diagram.

    Mantiene dos mapas por id, sustituidos enteros en cada paso:
      - outputs: salida de cada componente en el último paso completado
        (antes del paso 0: su initial_output).
      - states: registro BlockState privado de cada componente.

    Un paso:
      1. plan al día (orden topológico + productores de cada nodo)
      2. u = suma de outputs[p] del paso ANTERIOR para cada productor p
      3. (estado, y) = kind.update(estado, u, dt, t)
      4. y -> mapa del paso actual (Scope no escribe nada)
      5. Scope: Sample(k, t, id, u) -> lista local del paso
      6. el mapa actual pasa a ser el anterior; k += 1; t += dt;
         las muestras del paso pasan a la traza (+ on_sample)
    """

    def __init__(
        self,
        diagram: Diagram,
        *,
        config: Optional[SimConfig] = None,
        batch_size: int = 1,
        device: Optional[torch.device] = None,
        dtype: Optional[torch.dtype] = None,
        strict_numerics: bool = False,
        detach: bool = False,
    ):
        if int(batch_size) < 1:
            raise InvalidParameter(f"Simulator: batch_size debe ser >= 1, recibido {batch_size}.")
        self.diagram = diagram
        self.config = config if config is not None else SimConfig()
        self.strict_numerics = bool(strict_numerics)
        self.detach = bool(detach)

        # Mover buffers/parámetros del diagrama al device/dtype solicitados
        if device is not None or dtype is not None:
            diagram.to(device=device, dtype=dtype)
        self._B = int(batch_size)
        self._device = torch.device(device) if device is not None else torch.device("cpu")
        self._dtype = dtype if dtype is not None else torch.get_default_dtype()

        self.t: float = 0.0
        self.k: int = 0
        self.trace = Trace()

        self._outputs: Dict[int, torch.Tensor] = {}
        self._states: Dict[int, BlockState] = {}

        # plan
        self._order: List[int] = []
        self._inputs: Dict[int, List[int]] = {}
        self._kinds: Dict[int, ComponentKind] = {}
        self._revision: Optional[int] = None

        self.reset()

    # ---------- atajos ----------
    @property
    def B(self) -> int: return self._B
    @property
    def device(self) -> torch.device: return self._device
    @property
    def dtype(self) -> torch.dtype: return self._dtype
    @property
    def order(self) -> List[int]: return list(self._order)
    @property
    def outputs(self) -> Dict[int, torch.Tensor]: return dict(self._outputs)
    @property
    def states(self) -> Dict[int, BlockState]: return dict(self._states)

    def reset_time(self): self.t = 0.0; self.k = 0

    def reset(self):
        """Vuelve al estado inicial: t=0, traza vacía, mapas desde init_state/initial_output."""
        self.reset_time()
        self.trace.clear()
        self._outputs = {}
        self._states = {}
        self._revision = None
        self._plan()

    # ---------- plan ----------
    def _init_component(self, cid: int, kind: ComponentKind):
        kw = dict(device=self._device, dtype=self._dtype, initial_value=float(self.config.initial_value))
        self._states[cid] = kind.init_state(self._B, **kw)
        y0 = kind.initial_output(self._B, **kw)
        if y0 is not None:
            self._outputs[cid] = y0

    def _plan(self):
        d = self.diagram
        # CycleDetected sale de aquí, antes de tocar nada
        order = d.evaluation_order()
        kinds = {cid: d.kind(cid) for cid in order}
        for kind in kinds.values():
            kind.check_batch(self._B)

        # componentes eliminados desde el último plan
        for cid in list(self._states):
            if cid not in kinds:
                self._states.pop(cid, None)
                self._outputs.pop(cid, None)
        # componentes nuevos: arrancan desde su estado inicial
        for cid, kind in kinds.items():
            if cid not in self._states:
                self._init_component(cid, kind)

        self._order = order
        self._kinds = kinds
        self._inputs = {cid: d.inputs_of(cid) for cid in order}
        self._revision = d.revision

    def _gather(self, cid: int, prev: Dict[int, torch.Tensor]) -> torch.Tensor:
        acc = torch.zeros((self._B, 1), device=self._device, dtype=self._dtype)
        for p in self._inputs[cid]:
            y = prev.get(p)
            if y is not None:
                acc = acc + y
        return acc

    # ---------- un paso ----------
    def step(self, dt: Optional[float] = None, *,
             on_sample: Optional[Callable[[Sample], None]] = None) -> Dict[int, torch.Tensor]:
        dt = float(self.config.dt if dt is None else dt)
        if not dt > 0.0:
            raise InvalidParameter(f"Simulator.step: dt debe ser > 0, recibido {dt}.")
        if self._revision != self.diagram.revision:
            self._plan()

        prev = self._outputs
        cur: Dict[int, torch.Tensor] = {}
        new_states: Dict[int, BlockState] = {}
        samples: List[Sample] = []
        t0 = self.t

        with torch.set_grad_enabled(torch.is_grad_enabled() and not self.detach):
            for cid in self._order:
                kind = self._kinds[cid]
                u = self._gather(cid, prev)
                st, y = kind.update(self._states[cid], u, dt, t0)
                new_states[cid] = st
                if y is not None:
                    y = to_device_dtype(y, self._device, self._dtype)
                    if self.strict_numerics:
                        check_finite(y, name=f"{kind.label} (id={cid}) en t={t0:.6g}")
                    cur[cid] = y
                if kind.records:
                    samples.append(Sample(step=self.k, t=t0, scope_id=cid, value=u))

        # el paso solo se publica si se completó entero
        self._outputs = cur
        self._states = new_states
        self.k += 1
        self.t += dt
        for sample in samples:
            self.trace.append(sample)
        if on_sample is not None:
            for sample in samples:
                on_sample(sample)
        return dict(cur)

    # ---------- bucle ----------
    def simulate(
        self,
        *,
        steps: Optional[int] = None,
        dt: Optional[float] = None,
        total_time: Optional[float] = None,
        reset: bool = True,
        on_sample: Optional[Callable[[Sample], None]] = None,
        recorder: Optional[object] = None,
        # progreso (opcional)
        progress: bool = False,
        progress_interval: float = 1.0,
        progress_fn: Optional[Callable[[Dict[str, float]], None]] = None,
    ) -> Trace:
        """
        Ejecuta exactamente `steps` pasos (o round(total_time/dt)); sin ninguno de
        los dos usa config.steps. Con reset=True (por defecto) vacía la traza y
        parte del estado inicial; con reset=False continúa donde quedó.
        Si 'progress=True', imprime (o envía a 'progress_fn') una línea de estado
        cada ~progress_interval segundos de reloj.
        """
        dt = float(self.config.dt if dt is None else dt)
        if not dt > 0.0:
            raise InvalidParameter(f"Simulator.simulate: dt debe ser > 0, recibido {dt}.")
        if steps is not None and total_time is not None:
            raise InvalidParameter("Especifica como mucho uno: steps o total_time.")
        if total_time is not None:
            steps = int(round(float(total_time) / dt))
        elif steps is None:
            steps = int(self.config.steps)
        if int(steps) != steps or steps < 0:
            raise InvalidParameter(f"Simulator.simulate: steps debe ser entero >= 0, recibido {steps!r}.")
        steps = int(steps)

        if reset:
            self.reset()

        # ----- Config progreso -----
        start_wall = time.monotonic()
        last_report = start_wall
        start_t = self.t
        start_k = self.k

        # ----- Bucle principal -----
        for _ in range(steps):
            t_step = self.t
            outs = self.step(dt, on_sample=on_sample)

            if recorder is not None and hasattr(recorder, "on_step"):
                recorder.on_step(t_step, outs, self._states)

            if progress:
                now = time.monotonic()
                if now - last_report >= float(progress_interval):
                    wall_elapsed = now - start_wall
                    done_steps = self.k - start_k
                    sim_elapsed = self.t - start_t

                    steps_per_s = (done_steps / wall_elapsed) if wall_elapsed > 0 else float("inf")
                    speed_x = (sim_elapsed / wall_elapsed) if wall_elapsed > 0 else float("inf")
                    frac = (done_steps / steps) if steps > 0 else 0.0
                    remaining_steps = max(0, steps - done_steps)
                    eta_s = (remaining_steps / steps_per_s) if steps_per_s > 0 else float("nan")

                    info = {
                        "t": float(self.t),
                        "k": int(self.k),
                        "dt": float(dt),
                        "elapsed_wall_s": float(wall_elapsed),
                        "speed_steps_per_s": float(steps_per_s),
                        "speed_x": float(speed_x),
                        "progress": float(frac),
                        "eta_s": float(eta_s),
                        "target_steps": int(steps),
                    }

                    if progress_fn:
                        progress_fn(info)
                    else:
                        print(
                            f"[StepBox] {done_steps}/{steps} ({frac*100:5.1f}%)  |  "
                            f"t={self.t:.3f}s  |  Elapsed={wall_elapsed:5.1f}s  |  Speed={speed_x:5.1f}x  |  "
                            f"Remaining ≈ {eta_s:5.1f}s",
                            flush=True,
                        )
                    last_report = now

        return self.trace

    # --- CheckPoints ---------------------------------------------
    def make_checkpoint(self, detach: bool = True) -> dict:
        """
        Captura un checkpoint de la simulación (t, k, salidas, estados, longitud de traza).
        - detach=True: clona y *detachea* (no guarda la historia de autograd).
        - detach=False: clona manteniendo la historia.
        """
        outs = {}
        for cid, y in self._outputs.items():
            outs[cid] = y.detach().clone() if detach else y.clone()
        return {
            "t": float(self.t),
            "k": int(self.k),
            "outputs": outs,
            "states": {cid: st.clone(detach=detach) for cid, st in self._states.items()},
            "trace_len": len(self.trace),
        }

    def restore_checkpoint(self, chk: dict) -> None:
        """
        Restaura un checkpoint creado con make_checkpoint.
        La traza se recorta a la longitud que tenía al capturarlo.
        """
        if not isinstance(chk, dict):
            raise TypeError("Checkpoint inválido: se esperaba un dict.")
        missing = [k for k in ("t", "k", "outputs", "states", "trace_len") if k not in chk]
        if missing:
            raise KeyError(f"Checkpoint incompleto: faltan {missing}.")
        for cid in chk["states"]:
            if cid not in self.diagram:
                raise UnknownComponent(cid)

        self.t = float(chk["t"])
        self.k = int(chk["k"])
        self._outputs = dict(chk["outputs"])
        self._states = dict(chk["states"])
        self.trace.truncate(chk["trace_len"])
        # forzar re-plan: inicializa lo añadido después del checkpoint
        self._revision = None
