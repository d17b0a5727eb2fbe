"""Standard probability distributions for genmodel.

Every distribution is a `Distribution` family wrapping a TensorFlow
Probability constructor. Calling a family with parameters gives a `Dist`,
the value that appears on the right of a tilde statement:

    >>> from genmodel.distributions import normal
    >>> d = normal(0.0, 1.0)
    >>> d.logpdf(0.5)
"""

import jax.numpy as jnp

from genmodel._compat import ensure_jax_tfp_compat

ensure_jax_tfp_compat()

from tensorflow_probability.substrates import jax as tfp  # noqa: E402

from genmodel.core import (  # noqa: E402
    Any,
    Array,
    ArrayLike,
    Callable,
    Density,
    PRNGKey,
    Pytree,
)

tfd = tfp.distributions
tfb = tfp.bijectors


@Pytree.dataclass
class Dist(Pytree):
    """A distribution family applied to concrete parameters."""

    family: "Distribution"
    args: tuple
    kwargs: dict = Pytree.field(default_factory=dict)

    def to_tfp(self):
        return self.family.constructor(*self.args, **self.kwargs)

    def sample(self, key: PRNGKey) -> Array:
        return self.to_tfp().sample(seed=key)

    def logpdf(self, x: ArrayLike) -> Density:
        # Batched observations contribute the sum of their log densities.
        return jnp.sum(self.to_tfp().log_prob(x))

    def bijector(self):
        """Map from unconstrained space onto the support, or `None` when the
        support is discrete."""
        try:
            return self.to_tfp().experimental_default_event_space_bijector()
        except NotImplementedError:
            return None


@Pytree.dataclass
class Distribution(Pytree):
    """A family of distributions backed by a TFP constructor.

    Attributes:
        constructor: Callable taking parameters and returning a `tfd.Distribution`
        name: Optional name for the family (used in pretty printing)

    Example:
        >>> from tensorflow_probability.substrates import jax as tfp
        >>> from genmodel.distributions import Distribution
        >>>
        >>> normal = Distribution(tfp.distributions.Normal, name="Normal")
        >>> normal.logpdf(0.0, 0.0, 1.0)  # log N(0; 0, 1)
    """

    constructor: Callable[..., Any] = Pytree.static()
    name: str | None = Pytree.static(default=None)

    def __call__(self, *args, **kwargs) -> Dist:
        return Dist(self, args, kwargs)

    def sample(self, key: PRNGKey, *args, **kwargs) -> Array:
        return self(*args, **kwargs).sample(key)

    def logpdf(self, x: ArrayLike, *args, **kwargs) -> Density:
        return self(*args, **kwargs).logpdf(x)


def tfp_distribution(
    dist: Callable[..., Any],
    /,
    name: str | None = None,
) -> Distribution:
    return Distribution(dist, name)


####################
# Discrete support #
####################

# No event-space bijector: `Dist.bijector()` is `None`, so these variables
# are left untouched by `Trace.link()` and `SampleFromUniform` draws them
# from the prior.

bernoulli = tfp_distribution(tfd.Bernoulli, name="Bernoulli")
"""Values in {0, 1}. Positional parameter is `logits`; pass `probs=` for a
probability."""

flip = tfp_distribution(
    lambda p: tfd.Bernoulli(probs=p, dtype=jnp.bool_),
    name="Flip",
)
"""Boolean coin with `P(True) = p`."""

categorical = tfp_distribution(
    lambda logits: tfd.Categorical(logits),
    name="Categorical",
)
"""Index in `range(len(logits))`, from unnormalized log weights."""

geometric = tfp_distribution(tfd.Geometric, name="Geometric")

poisson = tfp_distribution(tfd.Poisson, name="Poisson")
"""Counts with mean `rate` (or `log_rate=`)."""

#############
# Real line #
#############

normal = tfp_distribution(tfd.Normal, name="Normal")
"""`normal(loc, scale)`. Parameters broadcast, so `normal(mus, 1.0)` is a
batch of independent normals whose `logpdf` is the sum over the batch."""

laplace = tfp_distribution(tfd.Laplace, name="Laplace")

student_t = tfp_distribution(tfd.StudentT, name="StudentT")
"""`student_t(df, loc, scale)`."""

multivariate_normal = tfp_distribution(
    tfd.MultivariateNormalFullCovariance,
    name="MultivariateNormal",
)
"""`multivariate_normal(loc, covariance)`; one event per vector."""

##################
# Positive reals #
##################

# Linked through a softplus or exp bijector, so unconstrained values of any
# sign map back to positive ones.

exponential = tfp_distribution(tfd.Exponential, name="Exponential")
"""`exponential(rate)`."""

gamma = tfp_distribution(tfd.Gamma, name="Gamma")

inverse_gamma = tfp_distribution(tfd.InverseGamma, name="InverseGamma")
"""`inverse_gamma(concentration, scale)`; the usual prior on a variance."""

half_normal = tfp_distribution(tfd.HalfNormal, name="HalfNormal")

log_normal = tfp_distribution(tfd.LogNormal, name="LogNormal")

###################
# Bounded support #
###################

beta = tfp_distribution(tfd.Beta, name="Beta")
"""`beta(concentration1, concentration0)` on (0, 1), linked by a sigmoid."""

uniform = tfp_distribution(tfd.Uniform, name="Uniform")
"""`uniform(low, high)`, linked by a shifted and scaled sigmoid."""

dirichlet = tfp_distribution(tfd.Dirichlet, name="Dirichlet")
"""Points on the probability simplex. The linked value has one fewer
coordinate than the stored one."""
