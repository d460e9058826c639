from __future__ import annotations

import logging

import jax.numpy as jnp
import pytest

from infolm.core.errors import IndeterminantSystemError
from infolm.core.factor_graph import FactorGraph
from infolm.core.types import Factor, FactorId, Key, Variable
from infolm.linear.elimination import SolveResult
from infolm.optimization import levenberg_marquardt as lm_module
from infolm.optimization.config import LMConfig, LMVerbosity
from infolm.optimization.levenberg_marquardt import (
    LevenbergMarquardtOptimizer,
    assess_step,
    check_convergence,
)
from infolm.optimization.state import IterationStatus
from infolm.slam.measurements import between_residual, prior_residual


def _chain_graph(init=(5.0, 5.0)) -> FactorGraph:
    """
    Two scalars with a prior x0 = 0 and a between x1 − x0 = 1.
    Optimum (0, 1) with zero cost.
    """
    fg = FactorGraph()
    fg.add_variable(Variable(id=Key(0), type="scalar", value=jnp.array([init[0]])))
    fg.add_variable(Variable(id=Key(1), type="scalar", value=jnp.array([init[1]])))
    fg.add_factor(Factor(
        id=FactorId(0), type="prior", var_ids=(Key(0),), params={"target": jnp.array([0.0])},
    ))
    fg.add_factor(Factor(
        id=FactorId(1), type="between", var_ids=(Key(0), Key(1)), params={"measurement": jnp.array([1.0])},
    ))
    fg.register_residual("prior", prior_residual)
    fg.register_residual("between", between_residual)
    return fg


def test_initial_state():
    opt = LevenbergMarquardtOptimizer(_chain_graph(), config=LMConfig(lambda_initial=1e-3))
    # 0.5 · (5² + (0 − 1)²)
    assert opt.error == pytest.approx(13.0)
    assert opt.lambda_ == pytest.approx(1e-3)
    assert opt.iterations == 0
    assert opt.state.lambda_factor == pytest.approx(10.0)


def test_lambda_grows_with_doubling_factor():
    opt = LevenbergMarquardtOptimizer(_chain_graph(), config=LMConfig(lambda_initial=1e-3))
    seen = []
    for _ in range(3):
        opt.increase_lambda()
        seen.append(opt.lambda_)
    assert seen == pytest.approx([1e-2, 2e-1, 8.0])


def test_lambda_grows_with_fixed_factor():
    cfg = LMConfig(lambda_initial=1e-3, use_fixed_lambda_factor=True)
    opt = LevenbergMarquardtOptimizer(_chain_graph(), config=cfg)
    seen = []
    for _ in range(3):
        opt.increase_lambda()
        seen.append(opt.lambda_)
    assert seen == pytest.approx([1e-2, 1e-1, 1.0])


@pytest.mark.parametrize(
    "fidelity, expected",
    [
        (1.0, 1.0 / 3.0),   # perfect model: strongest decrease
        (0.5, 1.0),         # 1 − 0³
        (0.0, 2.0),         # degenerate acceptance: 1 − (−1)³
    ],
)
def test_lambda_decrease_follows_cubic_rule(fidelity, expected):
    opt = LevenbergMarquardtOptimizer(_chain_graph())
    opt.state.lambda_ = 1.0
    opt.state.lambda_factor = 40.0
    opt.decrease_lambda(fidelity)
    assert opt.lambda_ == pytest.approx(expected)
    assert opt.state.lambda_factor == pytest.approx(2.0)


def test_lambda_decrease_respects_lower_bound():
    opt = LevenbergMarquardtOptimizer(_chain_graph(), config=LMConfig(lambda_lower_bound=0.5))
    opt.state.lambda_ = 1.0
    opt.decrease_lambda(1.0)
    assert opt.lambda_ == pytest.approx(0.5)


def test_fixed_factor_decrease_divides():
    cfg = LMConfig(use_fixed_lambda_factor=True)
    opt = LevenbergMarquardtOptimizer(_chain_graph(), config=cfg)
    opt.state.lambda_ = 1.0
    opt.decrease_lambda(0.9)
    assert opt.lambda_ == pytest.approx(0.1)


def test_assess_step_decisions():
    cfg = LMConfig(min_model_fidelity=0.1)

    good = assess_step(1.0, 0.9, 10.0, cfg)
    assert good.accepted and not good.stop_searching
    assert good.model_fidelity == pytest.approx(0.9)

    poor = assess_step(1.0, 0.01, 10.0, cfg)
    assert not poor.accepted and not poor.stop_searching
    assert poor.model_fidelity == pytest.approx(0.01)

    # true change below relative_error_tol · error
    tiny = assess_step(1.0, 1e-9, 10.0, cfg)
    assert tiny.stop_searching and not tiny.accepted


def test_degenerate_model_is_accepted_with_zero_fidelity():
    step = assess_step(1e-16, 0.5, 10.0, LMConfig())
    assert step.accepted
    assert step.model_fidelity == 0.0


def test_check_convergence():
    assert check_convergence(1e-5, 1e-5, 0.0, 10.0, 10.0 - 1e-7)
    assert not check_convergence(1e-5, 1e-5, 0.0, 10.0, 5.0)
    assert check_convergence(1e-5, 1e-5, 1.0, 0.5, 0.4)


def test_iterate_reaches_the_optimum():
    fg = _chain_graph()
    opt = LevenbergMarquardtOptimizer(fg)

    first = opt.iterate()
    assert first is IterationStatus.ACCEPTED
    assert opt.error < 13.0

    for _ in range(4):
        opt.iterate()

    assert float(opt.values[Key(0)][0]) == pytest.approx(0.0, abs=1e-6)
    assert float(opt.values[Key(1)][0]) == pytest.approx(1.0, abs=1e-6)
    assert opt.error == pytest.approx(0.0, abs=1e-10)
    assert opt.iterations == 5
    # the graph's own variables are not modified by the optimizer
    assert float(fg.variables[Key(0)].value[0]) == pytest.approx(5.0)


def test_diagonal_damping_reaches_the_optimum():
    opt = LevenbergMarquardtOptimizer(_chain_graph(), config=LMConfig(diagonal_damping=True))
    values = opt.optimize()
    assert float(values[Key(0)][0]) == pytest.approx(0.0, abs=1e-6)
    assert float(values[Key(1)][0]) == pytest.approx(1.0, abs=1e-6)


def test_inner_search_stops_when_no_step_can_reduce_the_error():
    """
    Priors x = 0 and x = 2 with x starting at 1: the damped step is zero,
    the true change is zero, so the search stops with CONVERGED and the
    estimate, error and lambda are left as they were.
    """
    fg = FactorGraph()
    fg.add_variable(Variable(id=Key(0), type="scalar", value=jnp.array([1.0])))
    for fid, target in enumerate((0.0, 2.0)):
        fg.add_factor(Factor(
            id=FactorId(fid), type="prior", var_ids=(Key(0),), params={"target": jnp.array([target])},
        ))
    fg.register_residual("prior", prior_residual)
    opt = LevenbergMarquardtOptimizer(fg)

    status = opt.iterate()

    assert status is IterationStatus.CONVERGED
    assert float(opt.values[Key(0)][0]) == pytest.approx(1.0)
    assert opt.error == pytest.approx(1.0)
    assert opt.lambda_ == pytest.approx(1e-5)
    assert opt.inner_iterations == 1
    assert opt.iterations == 1


def _seventh_power_residual(x, params):
    return x ** 7 - 1.0


def _seventh_power_graph() -> FactorGraph:
    """
    r(x) = x⁷ − 1 from x = 0.3. The Gauss–Newton step overshoots to
    x ≈ 196, so small lambdas are rejected before a step is accepted.
    """
    fg = FactorGraph()
    fg.add_variable(Variable(id=Key(0), type="scalar", value=jnp.array([0.3])))
    fg.add_factor(Factor(id=FactorId(0), type="seventh_power", var_ids=(Key(0),), params={}))
    fg.register_residual("seventh_power", _seventh_power_residual)
    return fg


def _count_diagonal_computations(monkeypatch):
    calls = []
    original = lm_module.compute_damping_diagonal

    def counting(*args, **kwargs):
        calls.append(1)
        return original(*args, **kwargs)

    monkeypatch.setattr(lm_module, "compute_damping_diagonal", counting)
    return calls


def test_damping_diagonal_is_reused_across_lambda_trials(monkeypatch):
    calls = _count_diagonal_computations(monkeypatch)
    cfg = LMConfig(diagonal_damping=True, lambda_upper_bound=1e10)
    opt = LevenbergMarquardtOptimizer(_seventh_power_graph(), config=cfg)

    status = opt.iterate()

    assert status is IterationStatus.ACCEPTED
    assert opt.inner_iterations > 1
    assert len(calls) == 1
    # dropped once the step is accepted
    assert opt.state.hessian_diagonal is None

    opt.iterate()
    assert len(calls) == 2


def test_rejected_trials_raise_lambda_until_a_step_is_accepted():
    cfg = LMConfig(diagonal_damping=True, lambda_upper_bound=1e10)
    opt = LevenbergMarquardtOptimizer(_seventh_power_graph(), config=cfg)
    initial_error = opt.error

    status = opt.iterate()

    assert status is IterationStatus.ACCEPTED
    assert opt.inner_iterations > 1
    # even after the cubic decrease lambda stays above where it started
    assert opt.lambda_ > cfg.lambda_initial
    assert opt.state.lambda_factor == pytest.approx(2.0)
    assert opt.error < initial_error
    assert 0.3 < float(opt.values[Key(0)][0]) < 1.0


def test_natural_ordering_option_reaches_the_optimum():
    cfg = LMConfig(ordering_type="natural")
    opt = LevenbergMarquardtOptimizer(_chain_graph(), config=cfg)
    values = opt.optimize()
    assert opt._ordering == [Key(0), Key(1)]
    assert float(values[Key(0)][0]) == pytest.approx(0.0, abs=1e-6)
    assert float(values[Key(1)][0]) == pytest.approx(1.0, abs=1e-6)


def test_failed_solves_make_the_optimizer_give_up(monkeypatch):
    """
    Every trial solve reports a singular system: lambda climbs to its
    upper bound, the status is GAVE_UP and the estimate is untouched.
    """
    def always_singular(graph, ordering=None, diagnostics=None):
        return SolveResult(error=IndeterminantSystemError("singular", key=Key(0)))

    monkeypatch.setattr(lm_module, "try_solve", always_singular)
    opt = LevenbergMarquardtOptimizer(_chain_graph())

    status = opt.iterate()

    assert status is IterationStatus.GAVE_UP
    assert opt.state.gave_up
    assert opt.lambda_ >= opt.config.lambda_upper_bound
    assert opt.inner_iterations > 1
    assert float(opt.values[Key(0)][0]) == pytest.approx(5.0)
    assert opt.error == pytest.approx(13.0)


def test_optimize_stops_after_giving_up(monkeypatch):
    monkeypatch.setattr(
        lm_module, "try_solve",
        lambda graph, ordering=None, diagnostics=None: SolveResult(error=IndeterminantSystemError("singular")),
    )
    opt = LevenbergMarquardtOptimizer(_chain_graph())
    opt.optimize()
    assert opt.iterations == 1


def test_optimize_honors_budgets():
    opt = LevenbergMarquardtOptimizer(_chain_graph(), config=LMConfig(max_iterations=0))
    values = opt.optimize()
    assert float(values[Key(0)][0]) == pytest.approx(5.0)

    opt = LevenbergMarquardtOptimizer(_chain_graph(), config=LMConfig(error_tol=20.0))
    opt.optimize()
    assert opt.iterations == 0


def test_inner_iterations_are_logged_to_csv(tmp_path):
    log_file = tmp_path / "lm.csv"
    opt = LevenbergMarquardtOptimizer(_chain_graph(), config=LMConfig(log_file=str(log_file)))
    opt.optimize()

    lines = log_file.read_text().strip().splitlines()
    assert len(lines) == opt.inner_iterations
    assert all(len(line.split(",")) == 4 for line in lines)
    assert lines[0].startswith("0,")


def test_verbosity_gates_logging(caplog):
    caplog.set_level(logging.INFO, logger="infolm.optimization.levenberg_marquardt")
    opt = LevenbergMarquardtOptimizer(_chain_graph(), config=LMConfig(verbosity=LMVerbosity.TRYLAMBDA))
    opt.iterate()
    assert any("trying lambda" in r.getMessage() for r in caplog.records)

    caplog.clear()
    quiet = LevenbergMarquardtOptimizer(_chain_graph())
    quiet.iterate()
    assert not any("trying lambda" in r.getMessage() for r in caplog.records)
