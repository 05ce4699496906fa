from __future__ import annotations
import os, sys

# permitir ejecutar desde /examples
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../")))


from stepbox.core.config import SimConfig
from stepbox.core.diagram import Diagram
from stepbox.utils.visualization import print_diagram_overview


def build_diagram() -> Diagram:
    """
    Lazo PID sobre una planta de primer orden:
      PID -> 1/(s+1) -> Memory -> PID   (Memory rompe el lazo)
      1/(s+1) -> Scope
    """
    d = Diagram("pid_loop")
    pid   = d.add_pid_controller(kp=1.5, ki=0.8, kd=0.05, reference=1.0, position=(0, 0))
    plant = d.add_transfer_function(alpha=0.3, position=(120, 0))
    mem   = d.add_memory(position=(120, 80))
    scope = d.add_scope(position=(240, 0))

    d.connect(pid, plant)
    d.connect(plant, mem)
    d.connect(mem, pid)
    d.connect(plant, scope)
    return d


def main():
    d = build_diagram()
    print_diagram_overview(d)

    trace = d.run(config=SimConfig(dt=0.1, steps=100))
    scope = trace.scope_ids()[0]
    vals = trace.values(scope)
    for k in range(0, len(vals), 10):
        print(f"k={k:3d}  t={trace.times(scope)[k]:5.2f}  y={vals[k]: .4f}")
    print("y final =", vals[-1])


if __name__ == "__main__":
    main()
