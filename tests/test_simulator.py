# tests/test_simulator.py
import math

import pytest
import torch

from stepbox.core.config import SimConfig
from stepbox.core.diagram import Diagram
from stepbox.core.errors import CycleDetected, InvalidParameter, UnknownComponent
from stepbox.core.recorders import OutputRecorder
from stepbox.core.simulator import Simulator
from stepbox.blocks.control import PIDController, TransferFunction


# --------------------------- helpers ---------------------------

def build_step_integrator(name="integ"):
    """Step -> Integrator -> Scope. Devuelve (diagrama, step, integ, scope)."""
    d = Diagram(name)
    s = d.add_step(); i = d.add_discrete_integrator(); sc = d.add_scope()
    d.connect(s, i).connect(i, sc)
    return d, s, i, sc


def build_pid_loop():
    """PID -> TF (planta) -> Memory -> PID, con un Scope sobre la planta."""
    d = Diagram("pid_loop")
    pid = d.add_pid_controller(kp=1.5, ki=0.8, kd=0.05, reference=1.0)
    plant = d.add_transfer_function(alpha=0.3)
    mem = d.add_memory()
    sc = d.add_scope()
    d.connect(pid, plant).connect(plant, mem).connect(mem, pid).connect(plant, sc)
    return d, pid, plant, sc


# ------------------------------ run() ------------------------------

def test_run_defaults_100_steps_of_0_1():
    d = Diagram()
    s = d.add_step(); sc = d.add_scope()
    d.connect(s, sc)
    trace = d.run()
    assert len(trace) == 100
    assert trace.values() == [1.0] * 100
    assert trace.times(sc) == pytest.approx([0.1 * k for k in range(100)])
    assert [smp.step for smp in trace] == list(range(100))


def test_step_always_outputs_one_in_graph():
    d = Diagram()
    s = d.add_step(); m = d.add_memory()
    d.connect(m, s)  # la entrada de Step se ignora
    sim = Simulator(d)
    rec = OutputRecorder([s])
    sim.simulate(steps=20, recorder=rec)
    ys = torch.cat(rec.results[s]).flatten().tolist()
    assert ys == [1.0] * 20


def test_integrator_fed_by_step_reaches_ten_after_100_steps():
    d, s, i, sc = build_step_integrator()
    sim = Simulator(d)
    trace = sim.simulate(steps=100, dt=0.1)
    assert sim.outputs[i].item() == pytest.approx(10.0, abs=1e-4)
    # el Scope ve la salida del paso anterior del integrador
    vals = trace.values(sc)
    assert vals[0] == 0.0
    assert vals[-1] == pytest.approx(9.9, abs=1e-4)
    assert vals == pytest.approx([0.1 * k for k in range(100)], abs=1e-4)


def test_difference_of_constant_is_zero_every_step():
    d = Diagram()
    s = d.add_step(); diff = d.add_difference(); sc = d.add_scope()
    d.connect(s, diff).connect(diff, sc)
    rec = OutputRecorder([diff])
    Simulator(d).simulate(steps=30, recorder=rec)
    assert torch.cat(rec.results[diff]).flatten().tolist() == [0.0] * 30


def test_memory_output_equals_previous_input():
    d, s, i, sc_in = build_step_integrator()
    m = d.add_memory()
    d.connect(i, m)
    rec = OutputRecorder([m])
    trace = Simulator(d).simulate(steps=25, recorder=rec)
    # sc_in recibe lo mismo que la entrada de m (salida previa del integrador)
    mem_in = trace.values(sc_in)
    mem_out = torch.cat(rec.results[m]).flatten().tolist()
    for t in range(1, 25):
        assert mem_out[t] == pytest.approx(mem_in[t - 1], abs=1e-6)


def test_delay_in_graph_shifts_input_by_n_steps():
    d, s, i, sc_in = build_step_integrator()
    dl = d.add_delay(3)
    d.connect(i, dl)
    rec = OutputRecorder([dl])
    trace = Simulator(d).simulate(steps=20, recorder=rec)
    din = trace.values(sc_in)
    dout = torch.cat(rec.results[dl]).flatten().tolist()
    assert dout[:3] == [0.0, 0.0, 0.0]
    for t in range(3, 20):
        assert dout[t] == pytest.approx(din[t - 3], abs=1e-6)


def test_fan_in_is_sum_not_average():
    d, s, i, _ = build_step_integrator()
    sc = d.add_scope()
    d.connect(s, sc).connect(i, sc)
    rec = OutputRecorder([s, i])
    trace = Simulator(d).simulate(steps=10, recorder=rec)
    got = trace.values(sc)
    ys = torch.cat(rec.results[s]).flatten().tolist()
    yi = torch.cat(rec.results[i]).flatten().tolist()
    # paso 0: salidas iniciales (Step=1, integrador=0)
    assert got[0] == pytest.approx(1.0)
    for t in range(1, 10):
        assert got[t] == pytest.approx(ys[t - 1] + yi[t - 1], abs=1e-6)
        assert got[t] != pytest.approx((ys[t - 1] + yi[t - 1]) / 2)


def test_repeated_connection_counts_twice():
    d = Diagram()
    s = d.add_step(); sc = d.add_scope()
    d.connect(s, sc).connect(s, sc)
    assert d.run(steps=3).values() == [2.0, 2.0, 2.0]


def test_scope_without_inputs_observes_zero():
    d = Diagram()
    sc = d.add_scope()
    assert d.run(steps=4).values(sc) == [0.0] * 4


def test_every_component_visited_once_per_step_in_topological_order():
    d, pid, plant, sc = build_pid_loop()
    s = d.add_step(); sc2 = d.add_scope()
    d.connect(s, sc2)
    sim = Simulator(d)
    order = sim.order
    assert sorted(order) == d.ids() and len(set(order)) == len(order)
    samples = []
    sim.simulate(steps=15, on_sample=samples.append)
    assert len(samples) == 15 * 2
    for k in range(15):
        assert sorted(smp.scope_id for smp in samples if smp.step == k) == [sc, sc2]
    assert samples == sim.trace.samples


def test_multiple_scopes_interleave_per_step():
    d = Diagram()
    s = d.add_step(); sc1 = d.add_scope(); sc2 = d.add_scope()
    d.connect(s, sc1)
    trace = d.run(steps=3)
    assert trace.values() == [1.0, 0.0, 1.0, 0.0, 1.0, 0.0]
    assert trace.scope_ids() == [sc1, sc2]


def test_pid_feedback_loop_runs_and_is_reproducible():
    d, pid, plant, sc = build_pid_loop()
    a = d.run(steps=200).values(sc)
    b = d.run(steps=200).values(sc)
    assert a == b
    assert all(math.isfinite(v) for v in a)
    assert len(a) == 200


def test_cycle_without_state_reported_by_run():
    d = Diagram()
    a = d.add_delay(0); b = d.add_delay(0); sc = d.add_scope()
    d.connect(a, b).connect(b, a).connect(b, sc)
    with pytest.raises(CycleDetected):
        d.run(steps=10)
    with pytest.raises(CycleDetected):
        Simulator(d)


def test_cycle_added_between_steps_is_reported_before_stepping():
    d = Diagram()
    a = d.add_delay(0); b = d.add_delay(0)
    d.connect(a, b)
    sim = Simulator(d)
    sim.step()
    d.connect(b, a)
    with pytest.raises(CycleDetected):
        sim.step()
    assert sim.k == 1


# --------------------------- configuración ---------------------------

def test_config_dt_and_steps_used_by_default():
    d, s, i, sc = build_step_integrator()
    trace = d.run(config=SimConfig(dt=0.5, steps=4))
    assert trace.times(sc) == [0.0, 0.5, 1.0, 1.5]
    assert trace.values(sc) == pytest.approx([0.0, 0.5, 1.0, 1.5])


def test_initial_value_seeds_stateful_outputs():
    d = Diagram()
    tf = d.add_transfer_function(); sc = d.add_scope()
    d.connect(tf, sc)
    vals = d.run(steps=3, config=SimConfig(initial_value=2.0)).values(sc)
    # TF sin entrada decae desde 2.0: 2.0 -> 1.8 -> 1.62
    assert vals == pytest.approx([2.0, 1.8, 1.62], abs=1e-6)


def test_total_time_sets_step_count():
    d, s, i, sc = build_step_integrator()
    trace = Simulator(d).simulate(total_time=1.0, dt=0.1)
    assert len(trace) == 10


@pytest.mark.parametrize("kwargs", [
    dict(dt=0.0), dict(dt=-0.1), dict(steps=-1), dict(steps=2.5),
    dict(steps=10, total_time=1.0),
])
def test_invalid_simulation_parameters(kwargs):
    d, *_ = build_step_integrator()
    with pytest.raises(InvalidParameter):
        Simulator(d).simulate(**kwargs)


def test_invalid_config_and_batch():
    with pytest.raises(InvalidParameter):
        SimConfig(dt=0.0)
    with pytest.raises(InvalidParameter):
        SimConfig(steps=-3)
    d, *_ = build_step_integrator()
    with pytest.raises(InvalidParameter):
        Simulator(d, batch_size=0)


# --------------------------- reanudación ---------------------------

def test_resume_equals_single_run():
    d_ref, *_, sc_ref = build_pid_loop()
    ref = Simulator(d_ref).simulate(steps=80).values(sc_ref)

    d, *_, sc = build_pid_loop()
    sim = Simulator(d)
    sim.simulate(steps=30)
    trace = sim.simulate(steps=50, reset=False)
    assert sim.k == 80 and sim.t == pytest.approx(8.0)
    assert trace.values(sc) == pytest.approx(ref, abs=1e-6)


def test_checkpoint_restore_replays_identically():
    d, *_, sc = build_pid_loop()
    sim = Simulator(d)
    sim.simulate(steps=40)
    chk = sim.make_checkpoint()
    assert chk["k"] == 40 and abs(chk["t"] - 4.0) < 1e-9
    first = sim.simulate(steps=20, reset=False).values(sc)[40:]

    sim.restore_checkpoint(chk)
    assert sim.k == 40 and len(sim.trace) == 40
    second = sim.simulate(steps=20, reset=False).values(sc)[40:]
    assert first == second


def test_restore_checkpoint_validates_input():
    d, *_ = build_step_integrator()
    sim = Simulator(d)
    with pytest.raises(TypeError):
        sim.restore_checkpoint([1, 2])
    with pytest.raises(KeyError):
        sim.restore_checkpoint({"t": 0.0})


def test_graph_changes_between_steps_are_picked_up():
    d = Diagram()
    a = d.add_step(); sc = d.add_scope()
    d.connect(a, sc)
    sim = Simulator(d)
    sim.step()
    b = d.add_step()
    d.connect(b, sc)
    sim.step()
    with pytest.warns(RuntimeWarning):
        d.remove_component(b)
    sim.step()
    assert sim.trace.values(sc) == [1.0, 2.0, 1.0]
    assert b not in sim.outputs


# --------------------------- batch y gradientes ---------------------------

def test_batched_parameter_sweep():
    d = Diagram()
    pid = d.add_component(PIDController(kp=[1.0, 2.0, 3.0], ki=0.0, kd=0.0))
    sc = d.add_scope()
    d.connect(pid, sc)
    trace = d.run(steps=5, batch_size=3)
    y = trace.series(sc)
    assert y.shape == (5, 3, 1)
    assert torch.allclose(y[1:, :, 0], torch.tensor([[1.0, 2.0, 3.0]]).expand(4, 3))
    with pytest.raises(ValueError):
        trace.values(sc)


def test_parameter_batch_mismatch_rejected():
    d = Diagram()
    d.add_component(TransferFunction(alpha=[0.1, 0.2]))
    with pytest.raises(InvalidParameter):
        Simulator(d, batch_size=3)


def test_trace_is_differentiable_wrt_trainable_gain():
    d = Diagram()
    pid = d.add_pid_controller(kp=2.0, ki=0.0, kd=0.0)
    sc = d.add_scope()
    d.connect(pid, sc)
    d.kind(pid).make_param_trainable("kp")
    trace = d.run(steps=10)
    loss = trace.series(sc).sum()
    loss.backward()
    # pasos 1..9 ven kp*e con e=1
    assert d.kind(pid).get_param("kp").grad.item() == pytest.approx(9.0)


def test_detach_drops_autograd_history():
    d = Diagram()
    pid = d.add_pid_controller(kp=2.0, ki=0.0, kd=0.0)
    sc = d.add_scope()
    d.connect(pid, sc)
    d.kind(pid).make_param_trainable("kp")
    trace = d.run(steps=5, detach=True)
    assert not trace.series(sc).requires_grad


def test_float64_run():
    d, s, i, sc = build_step_integrator()
    sim = Simulator(d, dtype=torch.float64)
    trace = sim.simulate(steps=100)
    assert trace.series(sc).dtype == torch.float64
    assert sim.outputs[i].item() == pytest.approx(10.0, abs=1e-12)


# --------------------------- numérica y progreso ---------------------------

def test_non_finite_values_propagate_by_default():
    d = Diagram()
    s = d.add_step(); tf = d.add_transfer_function(alpha=float("inf")); sc = d.add_scope()
    d.connect(s, tf).connect(tf, sc)
    vals = d.run(steps=3).values(sc)
    assert vals[0] == 0.0 and math.isinf(vals[1])


def test_strict_numerics_raises_on_non_finite():
    d = Diagram()
    s = d.add_step(); tf = d.add_transfer_function(alpha=float("inf")); sc = d.add_scope()
    d.connect(s, tf).connect(tf, sc)
    with pytest.raises(ValueError, match="1 / \\(s \\+ 1\\)"):
        d.run(steps=3, strict_numerics=True)


def test_progress_fn_receives_updates():
    d, *_ = build_step_integrator()
    infos = []
    Simulator(d).simulate(steps=5, progress=True, progress_interval=0.0, progress_fn=infos.append)
    assert len(infos) == 5
    assert infos[-1]["k"] == 5 and infos[-1]["progress"] == pytest.approx(1.0)


def test_progress_prints_when_no_fn(capsys):
    d, *_ = build_step_integrator()
    Simulator(d).simulate(steps=2, progress=True, progress_interval=0.0)
    out = capsys.readouterr().out
    assert "[StepBox] 2/2" in out


# --------------------------- pasos fallidos ---------------------------

def _build_step_scope_with_bad_tf():
    d = Diagram()
    s = d.add_step(); sc = d.add_scope()
    tf = d.add_transfer_function(alpha=float("inf"))
    d.connect(s, sc).connect(s, tf)
    return d, sc, tf


def test_failed_step_leaves_trace_and_clock_untouched():
    d, sc, tf = _build_step_scope_with_bad_tf()
    sim = Simulator(d, strict_numerics=True)
    seen = []
    with pytest.raises(ValueError):
        sim.step(on_sample=seen.append)
    assert sim.k == 0 and sim.t == 0.0
    assert len(sim.trace) == 0 and seen == []

    # tras arreglar el bloque, el mismo paso produce una sola muestra
    d.kind(tf).set_param("alpha", 0.5)
    sim.step(on_sample=seen.append)
    assert sim.k == 1
    assert [smp.step for smp in sim.trace] == [0]
    assert len(seen) == 1 and sim.trace.values(sc) == [1.0]


def test_on_sample_error_after_step_is_committed():
    d = Diagram()
    s = d.add_step(); sc = d.add_scope()
    d.connect(s, sc)
    sim = Simulator(d)

    def boom(sample):
        raise RuntimeError("callback")

    with pytest.raises(RuntimeError, match="callback"):
        sim.step(on_sample=boom)
    sim.step()
    assert [smp.step for smp in sim.trace] == [0, 1]


def test_restore_checkpoint_rejects_removed_component():
    d = Diagram()
    s = d.add_step(); m = d.add_memory(); sc = d.add_scope()
    d.connect(s, m).connect(m, sc)
    sim = Simulator(d)
    sim.simulate(steps=5)
    chk = sim.make_checkpoint()
    with pytest.warns(RuntimeWarning):
        d.remove_component(m)
    with pytest.raises(UnknownComponent) as ei:
        sim.restore_checkpoint(chk)
    assert ei.value.component_id == m
    # nada se restauró
    assert sim.k == 5 and len(sim.trace) == 5
