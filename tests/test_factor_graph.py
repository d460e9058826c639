from __future__ import annotations

import math

import pytest
import jax.numpy as jnp

from infolm.core.types import Key, FactorId, Variable, Factor
from infolm.core.factor_graph import FactorGraph
from infolm.core.values import Values
from infolm.linear.noise import NoiseModel
from infolm.slam.measurements import (
    prior_residual,
    between_residual,
    pose2_prior_residual,
    range_residual,
)


def test_linearize_between_factor():
    """
    Two scalars x0 = 2, x1 = 5, between measurement 1:
        r = (5 - 2) - 1 = 2
    Linearization gives A0 = [-1], A1 = [1] and b = -r.
    """
    fg = FactorGraph()
    fg.add_variable(Variable(id=Key(0), type="scalar", value=jnp.array([2.0])))
    fg.add_variable(Variable(id=Key(1), type="scalar", value=jnp.array([5.0])))
    fg.add_factor(Factor(
        id=FactorId(0),
        type="between",
        var_ids=(Key(0), Key(1)),
        params={"measurement": jnp.array([1.0])},
    ))
    fg.register_residual("between", between_residual)

    values = fg.initial_values()
    linear = fg.linearize(values)

    assert len(linear) == 1
    mf = linear[0]
    assert mf.keys == (Key(0), Key(1))
    assert jnp.allclose(mf.blocks[0], jnp.array([[-1.0]]))
    assert jnp.allclose(mf.blocks[1], jnp.array([[1.0]]))
    assert jnp.allclose(mf.b, jnp.array([-2.0]))
    assert fg.error(values) == pytest.approx(2.0)
    assert jnp.allclose(fg.unwhitened_residuals(values)[FactorId(0)], jnp.array([2.0]))
    # the linear model reproduces the nonlinear cost at δ = 0
    assert linear.error({Key(0): jnp.zeros(1), Key(1): jnp.zeros(1)}) == pytest.approx(2.0)


def test_linearize_range_factor():
    """
    a = (0, 0), b = (3, 4), measured range 4:
        r = 5 - 4 = 1,  ∂r/∂b = (0.6, 0.8) = -∂r/∂a
    """
    fg = FactorGraph()
    fg.add_variable(Variable(id=Key(0), type="point2d", value=jnp.array([0.0, 0.0])))
    fg.add_variable(Variable(id=Key(1), type="point2d", value=jnp.array([3.0, 4.0])))
    fg.add_factor(Factor(
        id=FactorId(0),
        type="range",
        var_ids=(Key(0), Key(1)),
        params={"range": jnp.array(4.0)},
    ))
    fg.register_residual("range", range_residual)

    mf = fg.linearize(fg.initial_values())[0]

    assert jnp.allclose(mf.b, jnp.array([-1.0]))
    assert jnp.allclose(mf.blocks[0], jnp.array([[-0.6, -0.8]]))
    assert jnp.allclose(mf.blocks[1], jnp.array([[0.6, 0.8]]))


def test_pose2_jacobian_is_taken_in_the_body_frame():
    """
    For a pose2 prior at heading π/2 the translational columns of the
    Jacobian are R(π/2), because δ is expressed in the body frame.
    """
    fg = FactorGraph()
    fg.add_variable(Variable(id=Key(0), type="pose2", value=jnp.array([1.0, 2.0, math.pi / 2])))
    fg.add_factor(Factor(
        id=FactorId(0), type="pose2_prior", var_ids=(Key(0),), params={"target": jnp.zeros(3)},
    ))
    fg.register_residual("pose2_prior", pose2_prior_residual)

    mf = fg.linearize(fg.initial_values())[0]

    expected = jnp.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    assert jnp.allclose(mf.blocks[0], expected, atol=1e-12)


def test_noise_model_weights_error_and_linearization():
    fg = FactorGraph()
    fg.add_variable(Variable(id=Key(0), type="scalar", value=jnp.array([1.0])))
    fg.add_factor(Factor(
        id=FactorId(0),
        type="prior",
        var_ids=(Key(0),),
        params={"target": jnp.array([0.0])},
        noise=NoiseModel.isotropic(1, 0.5),
    ))
    fg.register_residual("prior", prior_residual)

    values = fg.initial_values()
    # 0.5 · (1 / 0.5)²
    assert fg.error(values) == pytest.approx(2.0)
    assert fg.linearize(values)[0].noise.sigmas[0] == pytest.approx(0.5)


def test_unregistered_residual_raises():
    fg = FactorGraph()
    fg.add_variable(Variable(id=Key(0), type="scalar", value=jnp.array([1.0])))
    fg.add_factor(Factor(id=FactorId(0), type="mystery", var_ids=(Key(0),), params={}))
    with pytest.raises(ValueError):
        fg.error(fg.initial_values())


def test_graph_rejects_duplicates_and_unknown_variables():
    fg = FactorGraph()
    fg.add_variable(Variable(id=Key(0), type="scalar", value=jnp.array([1.0])))
    with pytest.raises(ValueError):
        fg.add_variable(Variable(id=Key(0), type="scalar", value=jnp.array([2.0])))
    with pytest.raises(ValueError):
        fg.add_factor(Factor(id=FactorId(0), type="prior", var_ids=(Key(3),), params={}))


def test_values_retract_on_pose2():
    values = Values({Key(0): jnp.array([1.0, 0.0, math.pi / 2]), Key(1): jnp.array([2.0])},
                    {Key(0): "pose2"})

    moved = values.retract({Key(0): jnp.array([1.0, 0.0, 0.1])})

    assert jnp.allclose(moved[Key(0)], jnp.array([1.0, 1.0, math.pi / 2 + 0.1]))
    assert jnp.allclose(moved[Key(1)], values[Key(1)])
    # the original estimate is untouched
    assert jnp.allclose(values[Key(0)], jnp.array([1.0, 0.0, math.pi / 2]))
    assert jnp.allclose(values.local_coordinates(moved)[Key(0)], jnp.array([1.0, 0.0, 0.1]))
