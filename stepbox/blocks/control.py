# stepbox/blocks/control.py
from __future__ import annotations
import torch

from ..core.component import ComponentKind
from ..core.state import LastOutput, PIDState


class TransferFunction(ComponentKind):
    """
    Aproximación discreta de 1/(s+1) como filtro paso-bajo de primer orden:
        y_k = y_{k-1} + alpha * (u_k - y_{k-1})
    Estado: salida anterior (arranca en initial_value).
    """
    def __init__(self, alpha: float = 0.1):
        super().__init__()
        self.declare_param("alpha", alpha)

    def init_state(self, batch_size, *, device=None, dtype=None, initial_value=0.0):
        return LastOutput(self._full(batch_size, initial_value, device=device, dtype=dtype))

    def initial_output(self, batch_size, *, device=None, dtype=None, initial_value=0.0):
        return self._full(batch_size, initial_value, device=device, dtype=dtype)

    def update(self, state, u, dt, t):
        alpha = self.get_param("alpha")
        y = state.value + alpha * (u - state.value)
        return LastOutput(y), y

    @property
    def label(self) -> str:
        return "1 / (s + 1)"


class PIDController(ComponentKind):
    """
    PID discreto en forma posicional, error respecto a una referencia fija:
        e = reference - u
        I_k = I_{k-1} + e*dt
        D_k = (e - e_prev)/dt
        y = Kp*e + Ki*I_k + Kd*D_k
    Estados: PIDState(prev_error, integral), ambos arrancan en 0.
    Con e_prev = 0 el primer paso incluye el salto derivativo Kd*e/dt.
    """
    def __init__(self, kp: float = 1.0, ki: float = 0.0, kd: float = 0.0, reference: float = 1.0):
        super().__init__()
        self.declare_param("kp", kp); self.declare_param("ki", ki); self.declare_param("kd", kd)
        self.declare_param("reference", reference)

    def init_state(self, batch_size, *, device=None, dtype=None, initial_value=0.0):
        zeros = self._full(batch_size, 0.0, device=device, dtype=dtype)
        return PIDState(prev_error=zeros, integral=zeros.clone())

    def initial_output(self, batch_size, *, device=None, dtype=None, initial_value=0.0):
        return self._full(batch_size, initial_value, device=device, dtype=dtype)

    def update(self, state, u, dt, t):
        kp = self.get_param("kp"); ki = self.get_param("ki"); kd = self.get_param("kd")
        e = self.get_param("reference") - u
        integral = state.integral + e * float(dt)
        de = (e - state.prev_error) / float(dt)
        y = kp * e + ki * integral + kd * de
        return PIDState(prev_error=e, integral=integral), y

    @property
    def label(self) -> str:
        return "PID"
