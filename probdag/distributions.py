"""
Probability distributions.

Each distribution is a :class:`.DistributionNode` subclass delegating its
density and CDF to ``tensorflow_probability``. The lowercase functions create a
distribution node and return its user-facing node, typically a new
:class:`.VariableNode`:

>>> mu = normal(0.0, 1.0)
>>> type(mu.distribution).__name__
'NormalDistribution'
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import jax.numpy as jnp
import numpy as np
import tensorflow_probability.substrates.jax.distributions as tfd

from .backend import Array, ValidationError
from .nodes import (
    Dim,
    DistributionNode,
    Node,
    VariableNode,
    as_dim,
    distrib,
    to_node,
)

__all__ = [
    "BernoulliDistribution",
    "BetaDistribution",
    "BinomialDistribution",
    "CauchyDistribution",
    "ExponentialDistribution",
    "GammaDistribution",
    "LKJCorrelationDistribution",
    "LogNormalDistribution",
    "NormalDistribution",
    "PoissonDistribution",
    "StudentDistribution",
    "UniformDistribution",
    "WishartDistribution",
    "bernoulli",
    "beta",
    "binomial",
    "cauchy",
    "check_dims",
    "exponential",
    "gamma",
    "lkj_correlation",
    "lognormal",
    "normal",
    "poisson",
    "student",
    "uniform",
    "wishart",
]

Truncation = Sequence[float] | None


def check_dims(*parameters: Node, target_dim: Dim = None) -> tuple[int, ...]:
    """
    Finds the dimension of a distribution from its parameters.

    Parameters must either be scalars, i.e. of dimension ``(1, 1)``, or share
    one dimension. ``target_dim`` can be given if all parameters are scalars or
    if it equals the shared dimension.

    Raises
    ------
    ValidationError
        If the parameter dimensions are incompatible with each other or with
        ``target_dim``.
    """
    dims = [parameter.dim for parameter in parameters]
    shared = list(dict.fromkeys(dim for dim in dims if dim != (1, 1)))

    if len(shared) > 1:
        raise ValidationError(
            "Incompatible dimensions: "
            + ", ".join(" x ".join(map(str, dim)) for dim in dims)
        )

    if target_dim is None:
        return shared[0] if shared else (1, 1)

    target_dim = as_dim(target_dim)

    if shared and shared[0] != target_dim:
        raise ValidationError(
            f"The target dimension {target_dim} does not match the parameter "
            f"dimension {shared[0]}"
        )

    return target_dim


def _fixed_number(x: Any, name: str) -> float:
    array = np.asarray(x)

    if isinstance(x, Node) or array.size != 1 or not np.isfinite(array).all():
        raise ValidationError(f"{name} must be a finite number, got {x!r}")

    return float(array.reshape(()))


def _flat_batch(x: Array) -> Array:
    return jnp.reshape(x, (-1,))


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# Continuous ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~


class NormalDistribution(DistributionNode):
    has_cdf = True

    def __init__(
        self, mean: Any, sd: Any, dim: Dim = None, truncation: Truncation = None
    ):
        mean, sd = to_node(mean), to_node(sd)
        dim = check_dims(mean, sd, target_dim=dim)
        super().__init__("normal", dim, truncation)
        self.add_parameter(mean, "mean")
        self.add_parameter(sd, "sd")

    def tfp_distribution(self, parameters):
        return tfd.Normal(loc=parameters["mean"], scale=parameters["sd"])


class LogNormalDistribution(DistributionNode):
    bounds = (0.0, np.inf)
    has_cdf = True

    def __init__(
        self, meanlog: Any, sdlog: Any, dim: Dim = None, truncation: Truncation = None
    ):
        meanlog, sdlog = to_node(meanlog), to_node(sdlog)
        dim = check_dims(meanlog, sdlog, target_dim=dim)
        super().__init__("lognormal", dim, truncation)
        self.add_parameter(meanlog, "meanlog")
        self.add_parameter(sdlog, "sdlog")

    def tfp_distribution(self, parameters):
        return tfd.LogNormal(loc=parameters["meanlog"], scale=parameters["sdlog"])


class ExponentialDistribution(DistributionNode):
    bounds = (0.0, np.inf)
    has_cdf = True

    def __init__(self, rate: Any, dim: Dim = None, truncation: Truncation = None):
        rate = to_node(rate)
        dim = check_dims(rate, target_dim=dim)
        super().__init__("exponential", dim, truncation)
        self.add_parameter(rate, "rate")

    def tfp_distribution(self, parameters):
        return tfd.Exponential(rate=parameters["rate"])


class GammaDistribution(DistributionNode):
    bounds = (0.0, np.inf)
    has_cdf = True

    def __init__(
        self, shape: Any, rate: Any, dim: Dim = None, truncation: Truncation = None
    ):
        shape, rate = to_node(shape), to_node(rate)
        dim = check_dims(shape, rate, target_dim=dim)
        super().__init__("gamma", dim, truncation)
        self.add_parameter(shape, "shape")
        self.add_parameter(rate, "rate")

    def tfp_distribution(self, parameters):
        return tfd.Gamma(concentration=parameters["shape"], rate=parameters["rate"])


class UniformDistribution(DistributionNode):
    """
    A uniform distribution on ``(min, max)``.

    The limits must be fixed numbers, as they define the support of the target.
    """

    has_cdf = True

    def __init__(self, min: float, max: float, dim: Dim = None):
        min = _fixed_number(min, "min")
        max = _fixed_number(max, "max")

        if not min < max:
            raise ValidationError(f"max must be greater than min, got {min=}, {max=}")

        self.bounds = (min, max)
        dim = as_dim(dim)

        super().__init__("uniform", dim)
        self.add_parameter(min, "min")
        self.add_parameter(max, "max")

    def tfp_distribution(self, parameters):
        return tfd.Uniform(low=parameters["min"], high=parameters["max"])


class BetaDistribution(DistributionNode):
    bounds = (0.0, 1.0)
    has_cdf = True

    def __init__(
        self, shape1: Any, shape2: Any, dim: Dim = None, truncation: Truncation = None
    ):
        shape1, shape2 = to_node(shape1), to_node(shape2)
        dim = check_dims(shape1, shape2, target_dim=dim)
        super().__init__("beta", dim, truncation)
        self.add_parameter(shape1, "shape1")
        self.add_parameter(shape2, "shape2")

    def tfp_distribution(self, parameters):
        return tfd.Beta(
            concentration1=parameters["shape1"], concentration0=parameters["shape2"]
        )


class CauchyDistribution(DistributionNode):
    has_cdf = True

    def __init__(
        self, location: Any, scale: Any, dim: Dim = None, truncation: Truncation = None
    ):
        location, scale = to_node(location), to_node(scale)
        dim = check_dims(location, scale, target_dim=dim)
        super().__init__("cauchy", dim, truncation)
        self.add_parameter(location, "location")
        self.add_parameter(scale, "scale")

    def tfp_distribution(self, parameters):
        return tfd.Cauchy(loc=parameters["location"], scale=parameters["scale"])


class StudentDistribution(DistributionNode):
    """A location-scale Student's t distribution."""

    has_cdf = True

    def __init__(
        self,
        df: Any,
        mu: Any,
        sigma: Any,
        dim: Dim = None,
        truncation: Truncation = None,
    ):
        df, mu, sigma = to_node(df), to_node(mu), to_node(sigma)
        dim = check_dims(df, mu, sigma, target_dim=dim)
        super().__init__("student", dim, truncation)
        self.add_parameter(df, "df")
        self.add_parameter(mu, "mu")
        self.add_parameter(sigma, "sigma")

    def tfp_distribution(self, parameters):
        return tfd.StudentT(
            df=parameters["df"], loc=parameters["mu"], scale=parameters["sigma"]
        )


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# Discrete ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~


class PoissonDistribution(DistributionNode):
    bounds = (0.0, np.inf)

    def __init__(self, rate: Any, dim: Dim = None):
        rate = to_node(rate)
        dim = check_dims(rate, target_dim=dim)
        super().__init__("poisson", dim, discrete=True)
        self.add_parameter(rate, "rate")

    def tfp_distribution(self, parameters):
        return tfd.Poisson(rate=parameters["rate"])


class BernoulliDistribution(DistributionNode):
    bounds = (0.0, 1.0)

    def __init__(self, prob: Any, dim: Dim = None):
        prob = to_node(prob)
        dim = check_dims(prob, target_dim=dim)
        super().__init__("bernoulli", dim, discrete=True)
        self.add_parameter(prob, "prob")

    def tfp_distribution(self, parameters):
        prob = parameters["prob"]
        return tfd.Bernoulli(probs=prob, dtype=prob.dtype)


class BinomialDistribution(DistributionNode):
    """A binomial distribution with a fixed number of trials."""

    bounds = (0.0, np.inf)

    def __init__(self, size: int, prob: Any, dim: Dim = None):
        size = _fixed_number(size, "size")

        if size < 1 or size != int(size):
            raise ValidationError(f"size must be a positive integer, got {size}")

        self.bounds = (0.0, size)
        size_node, prob = to_node(size), to_node(prob)
        dim = check_dims(prob, target_dim=dim)

        super().__init__("binomial", dim, discrete=True)
        self.add_parameter(size_node, "size")
        self.add_parameter(prob, "prob")

    def tfp_distribution(self, parameters):
        return tfd.Binomial(total_count=parameters["size"], probs=parameters["prob"])


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# Matrices ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~


class LKJCorrelationDistribution(DistributionNode):
    """The LKJ distribution over ``dimension x dimension`` correlation matrices."""

    def __init__(self, eta: Any, dimension: int = 2):
        eta = to_node(eta)
        if eta.dim != (1, 1):
            raise ValidationError(f"eta must be a scalar, got dimension {eta.dim}")

        super().__init__("lkj_correlation", (dimension, dimension))
        self.add_parameter(eta, "eta")

    def create_target(self, truncation):
        return VariableNode(dim=self.dim, constraint="correlation_matrix")

    def tfp_distribution(self, parameters):
        return tfd.LKJ(
            dimension=self.dim[0], concentration=_flat_batch(parameters["eta"])
        )


class WishartDistribution(DistributionNode):
    """A Wishart distribution over covariance matrices."""

    def __init__(self, df: Any, sigma: Any):
        df, sigma = to_node(df), to_node(sigma)

        if df.dim != (1, 1):
            raise ValidationError(f"df must be a scalar, got dimension {df.dim}")

        if len(sigma.dim) != 2 or sigma.dim[0] != sigma.dim[1]:
            raise ValidationError(
                f"sigma must be a square matrix, got dimension {sigma.dim}"
            )

        super().__init__("wishart", sigma.dim)
        self.add_parameter(df, "df")
        self.add_parameter(sigma, "sigma")

    def create_target(self, truncation):
        return VariableNode(dim=self.dim, constraint="covariance_matrix")

    def tfp_distribution(self, parameters):
        return tfd.WishartTriL(
            df=_flat_batch(parameters["df"]),
            scale_tril=jnp.linalg.cholesky(parameters["sigma"]),
        )


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# Constructors ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~


def normal(mean: Any, sd: Any, dim: Dim = None, truncation: Truncation = None) -> Node:
    return distrib(NormalDistribution, mean, sd, dim, truncation)


def lognormal(
    meanlog: Any, sdlog: Any, dim: Dim = None, truncation: Truncation = None
) -> Node:
    return distrib(LogNormalDistribution, meanlog, sdlog, dim, truncation)


def exponential(rate: Any, dim: Dim = None, truncation: Truncation = None) -> Node:
    return distrib(ExponentialDistribution, rate, dim, truncation)


def gamma(
    shape: Any, rate: Any, dim: Dim = None, truncation: Truncation = None
) -> Node:
    return distrib(GammaDistribution, shape, rate, dim, truncation)


def uniform(min: float, max: float, dim: Dim = None) -> Node:
    return distrib(UniformDistribution, min, max, dim)


def beta(
    shape1: Any, shape2: Any, dim: Dim = None, truncation: Truncation = None
) -> Node:
    return distrib(BetaDistribution, shape1, shape2, dim, truncation)


def cauchy(
    location: Any, scale: Any, dim: Dim = None, truncation: Truncation = None
) -> Node:
    return distrib(CauchyDistribution, location, scale, dim, truncation)


def student(
    df: Any, mu: Any, sigma: Any, dim: Dim = None, truncation: Truncation = None
) -> Node:
    return distrib(StudentDistribution, df, mu, sigma, dim, truncation)


def poisson(rate: Any, dim: Dim = None) -> Node:
    return distrib(PoissonDistribution, rate, dim)


def bernoulli(prob: Any, dim: Dim = None) -> Node:
    return distrib(BernoulliDistribution, prob, dim)


def binomial(size: int, prob: Any, dim: Dim = None) -> Node:
    return distrib(BinomialDistribution, size, prob, dim)


def lkj_correlation(eta: Any, dimension: int = 2) -> Node:
    return distrib(LKJCorrelationDistribution, eta, dimension)


def wishart(df: Any, sigma: Any) -> Node:
    return distrib(WishartDistribution, df, sigma)
