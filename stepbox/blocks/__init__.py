from .basic import Step, Scope
from .control import TransferFunction, PIDController
from .discrete import Difference, DiscreteDerivative, DiscreteIntegrator, Memory, Delay

__all__ = ["Step", "Scope", "TransferFunction", "PIDController",
           "Difference", "DiscreteDerivative", "DiscreteIntegrator", "Memory", "Delay"]
