import jax
import jax.numpy as jnp
import numpy as np
import pytest
import tensorflow_probability.substrates.jax.bijectors as tfb

from probdag.backend import ValidationError
from probdag.constraints import (
    CONSTRAINTS,
    CorrelationMatrix,
    CovarianceMatrix,
    Interval,
    LowerBounded,
    Unconstrained,
    UpperBounded,
    constraint_tag,
    get_constraint,
)

SCALAR_CASES = [
    ("none", -np.inf, np.inf),
    ("low", -np.inf, 1.5),
    ("high", -0.5, np.inf),
    ("both", -1.0, 3.0),
]


def elementwise_log_derivative(constraint, x, lower, upper):
    def f(s):
        return constraint.forward(s, lower, upper)

    derivative = jax.vmap(jax.vmap(jax.grad(f)))(x)
    return jnp.sum(jnp.log(jnp.abs(derivative)), axis=-1)


class TestScalarConstraints:
    @pytest.mark.parametrize("tag, lower, upper", SCALAR_CASES)
    def test_monotonic(self, tag, lower, upper) -> None:
        constraint = get_constraint(tag)
        x = jnp.linspace(-5.0, 5.0, 101).reshape(1, -1)
        diff = np.diff(np.asarray(constraint.forward(x, lower, upper)[0]))

        if tag == "low":
            assert np.all(diff < 0.0)
        else:
            assert np.all(diff > 0.0)

    @pytest.mark.parametrize("tag, lower, upper", SCALAR_CASES)
    def test_maps_into_support(self, tag, lower, upper) -> None:
        constraint = get_constraint(tag)
        x = jnp.linspace(-8.0, 8.0, 33).reshape(1, -1)
        y = np.asarray(constraint.forward(x, lower, upper))

        assert np.all(y > lower)
        assert np.all(y < upper)

    @pytest.mark.parametrize("tag, lower, upper", SCALAR_CASES)
    def test_inverse(self, tag, lower, upper) -> None:
        constraint = get_constraint(tag)
        x = jnp.array([[-1.5, 0.0, 0.7]])
        y = constraint.forward(x, lower, upper)
        free = constraint.inverse(np.asarray(y), lower, upper)

        assert np.allclose(free, x.ravel(), atol=1e-4)

    def test_interval_round_trip(self) -> None:
        lower, upper = 2.0, 5.0
        y = np.linspace(2.01, 4.99, 50)
        x = Interval().inverse(y, lower, upper)
        y_again = Interval().forward(jnp.asarray(x).reshape(1, -1), lower, upper)

        assert np.allclose(np.asarray(y_again)[0], y, atol=1e-5)

    @pytest.mark.parametrize("tag", ["low", "high", "both"])
    def test_inverse_outside_support(self, tag) -> None:
        constraint = get_constraint(tag)

        with pytest.raises(ValidationError, match="strictly between"):
            constraint.inverse([10.0, -10.0], -1.0, 1.0)

    def test_unconstrained_inverse_rejects_infinite(self) -> None:
        with pytest.raises(ValidationError, match="finite"):
            Unconstrained().inverse([np.inf], -np.inf, np.inf)

    @pytest.mark.parametrize("seed", [0, 1, 2])
    @pytest.mark.parametrize("tag", ["none", "low", "high", "both"])
    def test_log_jacobian_matches_derivative(self, tag, seed) -> None:
        rng = np.random.default_rng(seed)
        lower = float(rng.uniform(-3.0, 0.0))
        upper = lower + float(rng.uniform(0.5, 4.0))

        if tag == "none":
            lower, upper = -np.inf, np.inf
        elif tag == "low":
            lower = -np.inf
        elif tag == "high":
            upper = np.inf

        constraint = get_constraint(tag)
        x = jnp.asarray(rng.normal(size=(3, 4)), dtype=jnp.float32)

        expected = elementwise_log_derivative(constraint, x, lower, upper)
        log_jacobian = constraint.log_jacobian(x, lower, upper)

        assert log_jacobian.shape == (3,)
        assert np.allclose(log_jacobian, expected, rtol=1e-4, atol=1e-4)

    def test_unconstrained_log_jacobian_is_zero(self) -> None:
        log_jacobian = Unconstrained().log_jacobian(jnp.ones((5, 2)), -np.inf, np.inf)

        assert log_jacobian.shape == (5,)
        assert np.all(log_jacobian == 0.0)

    def test_exponential_maps(self) -> None:
        x = jnp.zeros((1, 1))

        assert UpperBounded().forward(x, -np.inf, 2.0)[0, 0] == pytest.approx(1.0)
        assert LowerBounded().forward(x, 2.0, np.inf)[0, 0] == pytest.approx(3.0)

    @pytest.mark.parametrize(
        "constraint, lower, upper, bijector",
        [
            (Unconstrained(), -np.inf, np.inf, tfb.Identity()),
            (
                UpperBounded(),
                -np.inf,
                1.5,
                tfb.Chain([tfb.Shift(1.5), tfb.Scale(-1.0), tfb.Exp()]),
            ),
            (LowerBounded(), -0.5, np.inf, tfb.Chain([tfb.Shift(-0.5), tfb.Exp()])),
            (Interval(), -1.0, 3.0, tfb.Sigmoid(low=-1.0, high=3.0)),
        ],
    )
    def test_agrees_with_bijector(self, constraint, lower, upper, bijector) -> None:
        x = jnp.linspace(-4.0, 4.0, 12, dtype=jnp.float32).reshape(3, 4)

        forward = constraint.forward(x, lower, upper)
        log_jacobian = constraint.log_jacobian(x, lower, upper)
        fldj = jnp.broadcast_to(bijector.forward_log_det_jacobian(x, 0), x.shape)

        assert np.allclose(forward, bijector.forward(x), rtol=1e-5, atol=1e-5)
        assert np.allclose(log_jacobian, jnp.sum(fldj, axis=-1), atol=1e-4)


def test_constraint_tag() -> None:
    assert constraint_tag(-np.inf, np.inf) == "none"
    assert constraint_tag(-np.inf, 0.0) == "low"
    assert constraint_tag(0.0, np.inf) == "high"
    assert constraint_tag(0.0, 1.0) == "both"


def test_registry() -> None:
    assert set(CONSTRAINTS) == {
        "none",
        "low",
        "high",
        "both",
        "correlation_matrix",
        "covariance_matrix",
    }

    for tag, constraint in CONSTRAINTS.items():
        assert constraint.tag == tag


def test_unknown_constraint() -> None:
    with pytest.raises(ValidationError, match="Unknown constraint 'simplex'"):
        get_constraint("simplex")


class TestCorrelationMatrix:
    def test_free_size(self) -> None:
        assert CorrelationMatrix().free_size((2, 2)) == 1
        assert CorrelationMatrix().free_size((3, 3)) == 3
        assert CorrelationMatrix().free_size((4, 4)) == 6

    @pytest.mark.parametrize("dim", [(3, 2), (1, 1), (2, 2, 2)])
    def test_free_size_invalid_dim(self, dim) -> None:
        with pytest.raises(ValidationError, match="square dimension"):
            CorrelationMatrix().free_size(dim)

    def test_forward(self) -> None:
        rng = np.random.default_rng(3)
        x = jnp.asarray(rng.normal(size=(2, 3)), dtype=jnp.float32)
        y = np.asarray(CorrelationMatrix().forward(x, -np.inf, np.inf))

        assert y.shape == (2, 3, 3)
        assert np.allclose(y, np.swapaxes(y, -1, -2), atol=1e-6)
        assert np.allclose(np.diagonal(y, axis1=-2, axis2=-1), 1.0, atol=1e-5)
        assert np.all(np.linalg.eigvalsh(y) > 0.0)

    def test_inverse(self) -> None:
        x = jnp.array([[0.3, -0.8, 1.1, 0.2, -0.4, 0.6]])
        y = CorrelationMatrix().forward(x, -np.inf, np.inf)
        free = CorrelationMatrix().inverse(np.asarray(y[0]), -np.inf, np.inf)

        assert np.allclose(free, x[0], atol=1e-4)

    def test_log_jacobian_matches_numeric(self) -> None:
        n = 3
        rows, cols = np.tril_indices(n, -1)
        x = jnp.array([0.3, -0.8, 0.5])

        def free_entries(free):
            matrix = CorrelationMatrix().forward(free[None], -np.inf, np.inf)[0]
            return matrix[rows, cols]

        _, expected = jnp.linalg.slogdet(jax.jacfwd(free_entries)(x))
        log_jacobian = CorrelationMatrix().log_jacobian(x[None], -np.inf, np.inf)

        assert log_jacobian.shape == (1,)
        assert log_jacobian[0] == pytest.approx(float(expected), abs=1e-4)

    def test_inverse_invalid_values(self) -> None:
        with pytest.raises(ValidationError, match="unit diagonal"):
            CorrelationMatrix().inverse(2.0 * np.eye(2), -np.inf, np.inf)

        with pytest.raises(ValidationError, match="symmetric"):
            CorrelationMatrix().inverse([[1.0, 0.5], [0.1, 1.0]], -np.inf, np.inf)

        with pytest.raises(ValidationError, match="positive definite"):
            CorrelationMatrix().inverse([[1.0, 2.0], [2.0, 1.0]], -np.inf, np.inf)


class TestCovarianceMatrix:
    def test_free_size(self) -> None:
        assert CovarianceMatrix().free_size((2, 2)) == 3
        assert CovarianceMatrix().free_size((3, 3)) == 6

    def test_forward(self) -> None:
        rng = np.random.default_rng(4)
        x = jnp.asarray(rng.normal(size=(2, 6)), dtype=jnp.float32)
        y = np.asarray(CovarianceMatrix().forward(x, -np.inf, np.inf))

        assert y.shape == (2, 3, 3)
        assert np.allclose(y, np.swapaxes(y, -1, -2), atol=1e-5)
        assert np.all(np.linalg.eigvalsh(y) > 0.0)

    def test_log_diagonal_layout(self) -> None:
        x = jnp.array([[np.log(2.0), np.log(3.0), 0.5]])
        y = CovarianceMatrix().forward(x, -np.inf, np.inf)[0]

        # L = [[2, 0], [0.5, 3]]
        expected = np.array([[4.0, 1.0], [1.0, 9.25]])
        assert np.allclose(y, expected, atol=1e-5)

    def test_inverse(self) -> None:
        x = jnp.array([[0.1, -0.3, 0.2, 0.5, -0.7, 0.4]])
        y = CovarianceMatrix().forward(x, -np.inf, np.inf)
        free = CovarianceMatrix().inverse(np.asarray(y[0]), -np.inf, np.inf)

        assert np.allclose(free, x[0], atol=1e-4)

    def test_log_jacobian_matches_numeric(self) -> None:
        n = 3
        rows, cols = np.tril_indices(n)
        x = jnp.array([0.1, -0.3, 0.2, 0.5, -0.7, 0.4])

        def free_entries(free):
            matrix = CovarianceMatrix().forward(free[None], -np.inf, np.inf)[0]
            return matrix[rows, cols]

        _, expected = jnp.linalg.slogdet(jax.jacfwd(free_entries)(x))
        log_jacobian = CovarianceMatrix().log_jacobian(x[None], -np.inf, np.inf)

        assert log_jacobian.shape == (1,)
        assert log_jacobian[0] == pytest.approx(float(expected), abs=1e-3)
