# stepbox/core/__init__.py
from __future__ import annotations

__all__ = [
    "ComponentKind","Component","Position",
    "Diagram","Simulator","SimConfig",
    "SignalGraph","evaluation_order",
    "Trace","Sample","OutputRecorder",
    "StepBoxError","CycleDetected","UnknownComponent","InvalidParameter",
]



from .component import ComponentKind, Component, Position
from .config import SimConfig
from .diagram import Diagram
from .simulator import Simulator

from .topology import SignalGraph
from .scheduler import evaluation_order

from .recorders import Trace, Sample, OutputRecorder
from .errors import StepBoxError, CycleDetected, UnknownComponent, InvalidParameter
