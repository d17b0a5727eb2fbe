"""Sampling strategies.

A sampler decides how a variable that is not yet in the trace (or is flagged
for resampling) gets its value. Samplers may carry mutable state; model
evaluation increments `state.eval_num` when it is present.
"""

from dataclasses import dataclass

import jax.numpy as jnp
import jax.random as jrand

from genmodel.core import Any, Array, Pytree
from genmodel.distributions import Dist


@Pytree.dataclass
class SampleFromPrior(Pytree):
    """Draw missing variables from their prior."""

    def draw(self, rng, dist: Dist) -> Array:
        return dist.sample(rng.next_key())


@Pytree.dataclass
class SampleFromUniform(Pytree):
    """Draw missing variables uniformly in `[-radius, radius]` of unconstrained
    space, mapped onto the support. Discrete variables fall back to the prior."""

    radius: float = 2.0

    def draw(self, rng, dist: Dist) -> Array:
        bijector = dist.bijector()
        template = dist.sample(rng.next_key())
        if bijector is None:
            return template
        shape = jnp.shape(bijector.inverse(template))
        u = jrand.uniform(
            rng.next_key(),
            shape=shape,
            minval=-self.radius,
            maxval=self.radius,
        )
        return bijector.forward(u)


# Compared and hashed by identity: it sits in the static part of a `Sampler`,
# which must stay hashable while `eval_num` changes.
@dataclass(eq=False)
class SamplerState:
    eval_num: int = 0


@Pytree.dataclass
class Sampler(Pytree):
    """An inference algorithm paired with its mutable state.

    The algorithm is opaque here; missing variables are drawn from the prior.
    Variables the sampler draws are tagged with its `selector`, so that
    `trace[sampler]` and `trace.set_retained_del(sampler)` address exactly
    the variables this sampler is responsible for. With no selector the
    sampler addresses every variable.
    """

    alg: Any = Pytree.static(default=None)
    state: SamplerState = Pytree.static(default_factory=SamplerState)
    selector: str | None = Pytree.static(default=None)

    def draw(self, rng, dist: Dist) -> Array:
        return dist.sample(rng.next_key())


def has_eval_num(sampler: Any) -> bool:
    state = getattr(sampler, "state", None)
    return state is not None and hasattr(state, "eval_num")


def get_selector(sampler: Any) -> str | None:
    return getattr(sampler, "selector", None)
