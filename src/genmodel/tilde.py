"""Tilde statements: `assume` for latent variables, `observe` for data.

Both statements resolve a value and a log-probability term for the current
context, then accumulate the term into the trace with `acclogp`. Resolution
dispatches on the context type, so custom contexts plug in by registering
with `tilde_assume` / `tilde_observe`:

    >>> from genmodel.tilde import tilde_observe
    >>> @tilde_observe.register(MyContext)
    ... def _(context, sampler, dist, value, trace):
    ...     ...

| context           | assume term    | observe term           |
|-------------------|----------------|------------------------|
| DefaultContext    | logpdf(value)  | logpdf(obs)            |
| PriorContext      | logpdf(value)  | 0                      |
| LikelihoodContext | 0              | logpdf(obs)            |
| MiniBatchContext  | inner context  | scalar * inner term    |
"""

import logging
from functools import singledispatch

import jax.numpy as jnp

from genmodel.contexts import (
    DefaultContext,
    LikelihoodContext,
    MiniBatchContext,
    PriorContext,
)
from genmodel.core import Any
from genmodel.distributions import Dist
from genmodel.samplers import get_selector
from genmodel.trace import AbstractTrace

logger = logging.getLogger(__name__)


def _zero():
    return jnp.array(0.0)


def resolve_value(
    rng,
    sampler: Any,
    dist: Dist,
    name: str,
    trace: AbstractTrace,
    vars: dict[str, Any] | None = None,
) -> Any:
    """The value of latent variable `name` for this evaluation.

    Fixed values in `vars` win, then the trace (unless flagged `"del"`),
    then a fresh draw from `sampler`. Fixed and drawn values are written
    back to the trace. A sampler with a selector tags the variable with it.
    """
    selector = get_selector(sampler)
    gids = () if selector is None else (selector,)
    if name in trace and selector is not None:
        trace.setgid(name, selector)
    if vars is not None and name in vars:
        value = jnp.asarray(vars[name])
        if name in trace:
            trace[name] = value
        else:
            trace.push(name, value, dist, gids)
        return value
    if name in trace and not trace.is_flagged(name, "del"):
        return trace[name]
    value = sampler.draw(rng, dist)
    if name in trace:
        trace[name] = value
        trace.unset_flag(name, "del")
    else:
        trace.push(name, value, dist, gids)
    logger.debug("drew %s with %s", name, type(sampler).__name__)
    return value


##########
# Assume #
##########


@singledispatch
def tilde_assume(context, rng, sampler, dist, name, trace) -> tuple[Any, Any]:
    raise NotImplementedError(
        f"no assume rule for context of type {type(context).__name__}"
    )


@tilde_assume.register(DefaultContext)
def _(context, rng, sampler, dist, name, trace):
    value = resolve_value(rng, sampler, dist, name, trace)
    return value, dist.logpdf(value)


@tilde_assume.register(PriorContext)
def _(context, rng, sampler, dist, name, trace):
    value = resolve_value(rng, sampler, dist, name, trace, context.vars)
    return value, dist.logpdf(value)


@tilde_assume.register(LikelihoodContext)
def _(context, rng, sampler, dist, name, trace):
    value = resolve_value(rng, sampler, dist, name, trace, context.vars)
    return value, _zero()


@tilde_assume.register(MiniBatchContext)
def _(context, rng, sampler, dist, name, trace):
    return tilde_assume(context.context, rng, sampler, dist, name, trace)


###########
# Observe #
###########


@singledispatch
def tilde_observe(context, sampler, dist, value, trace) -> Any:
    raise NotImplementedError(
        f"no observe rule for context of type {type(context).__name__}"
    )


@tilde_observe.register(DefaultContext)
def _(context, sampler, dist, value, trace):
    return dist.logpdf(value)


@tilde_observe.register(PriorContext)
def _(context, sampler, dist, value, trace):
    return _zero()


@tilde_observe.register(LikelihoodContext)
def _(context, sampler, dist, value, trace):
    return dist.logpdf(value)


@tilde_observe.register(MiniBatchContext)
def _(context, sampler, dist, value, trace):
    return context.loglike_scalar * tilde_observe(
        context.context, sampler, dist, value, trace
    )


def assume(
    rng,
    context: Any,
    sampler: Any,
    dist: Dist,
    name: str,
    trace: AbstractTrace,
) -> Any:
    value, logp = tilde_assume(context, rng, sampler, dist, name, trace)
    trace.acclogp(logp)
    return value


def observe(
    context: Any,
    sampler: Any,
    dist: Dist,
    value: Any,
    trace: AbstractTrace,
) -> Any:
    logp = tilde_observe(context, sampler, dist, value, trace)
    trace.increment_num_produce()
    trace.acclogp(logp)
    return value
