# stepbox/__init__.py
from __future__ import annotations

__all__ = [
    "__version__",
    "ComponentKind","Component","Position",
    "Diagram","Simulator","SimConfig",
    "SignalGraph","evaluation_order",
    "Trace","Sample","OutputRecorder",
    "StepBoxError","CycleDetected","UnknownComponent","InvalidParameter",
    "Step","Scope","TransferFunction","PIDController",
    "Difference","DiscreteDerivative","DiscreteIntegrator","Memory","Delay",
]


__version__ = "0.1.0"

# Core
from .core.component import ComponentKind, Component, Position
from .core.config import SimConfig
from .core.diagram import Diagram
from .core.simulator import Simulator
from .core.topology import SignalGraph
from .core.scheduler import evaluation_order

# Traza, recorders y errores
from .core.recorders import Trace, Sample, OutputRecorder
from .core.errors import StepBoxError, CycleDetected, UnknownComponent, InvalidParameter

# Bloques
from .blocks.basic import Step, Scope
from .blocks.control import TransferFunction, PIDController
from .blocks.discrete import Difference, DiscreteDerivative, DiscreteIntegrator, Memory, Delay
