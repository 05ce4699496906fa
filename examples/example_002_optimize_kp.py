from __future__ import annotations
import os, sys, torch

# permitir ejecutar desde /examples
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../")))


from stepbox.core.diagram import Diagram
from stepbox.core.simulator import Simulator


def build_diagram():
    """PI + planta 1/(s+1) con realimentación a través de Memory."""
    d = Diagram("pi_opt_kp")
    pid   = d.add_pid_controller(kp=0.2, ki=0.5, kd=0.0, reference=1.0)
    plant = d.add_transfer_function(alpha=0.2)
    mem   = d.add_memory()
    scope = d.add_scope()
    d.connect(pid, plant).connect(plant, mem).connect(mem, pid).connect(plant, scope)
    return d, pid, scope


def main():
    torch.set_default_dtype(torch.float32)
    d, pid, scope = build_diagram()

    # Kp entrenable (nn.Parameter shape (1,1))
    d.kind(pid).make_param_trainable("kp")
    kp_param = d.kind(pid).get_param("kp")
    opt = torch.optim.Adam([kp_param], lr=0.05)

    sim = Simulator(d)
    n_epochs = 40
    for epoch in range(1, n_epochs + 1):
        trace = sim.simulate(steps=60, dt=0.1)      # reset=True: parte del estado inicial
        y = trace.series(scope)                    # (T,1,1), con autograd
        loss = torch.mean((y[20:] - 1.0) ** 2)     # seguimiento tras el transitorio

        opt.zero_grad(set_to_none=True)
        loss.backward()
        opt.step()

        if epoch % 5 == 0 or epoch == 1:
            print(f"[{epoch:02d}/{n_epochs}] loss={loss.item():.6e}  Kp={float(kp_param.detach()):.4f}")

    print("\nKp aprendido =", float(kp_param.detach()))


if __name__ == "__main__":
    main()
