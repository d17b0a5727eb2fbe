"""The `@model` decorator.

Turns a Python function into a `ModelGen`. The first parameter of the
function receives a `Tilde` handle for the running evaluation; the remaining
parameters are the model's arguments:

    >>> from genmodel import model, missing, normal
    >>>
    >>> @model
    ... def regression(v, xs, ys=missing, noise=0.1):
    ...     slope = v("slope", normal(0.0, 1.0))
    ...     v("ys", normal(slope * xs, noise))
    ...     return slope
    >>>
    >>> regression(jnp.arange(3.0), jnp.array([0.1, 0.9, 2.1]))  # ys observed
    >>> regression(jnp.arange(3.0))  # ys sampled

An argument that is bound and not missing is observed when its name is used
on the left of a tilde; every other name is assumed.
"""

import inspect
from dataclasses import dataclass

from genmodel import threads
from genmodel.core import Any, Callable, Iterable
from genmodel.distributions import Dist
from genmodel.models import Model, ModelGen
from genmodel.tilde import assume, observe
from genmodel.trace import AbstractTrace


@dataclass
class Tilde:
    """Handle to one evaluation, passed to the body of a `@model` function."""

    rng: Any
    model: Model
    trace: AbstractTrace
    sampler: Any
    context: Any

    def __call__(self, name: str, dist: Dist) -> Any:
        if name in self.model.args and name not in self.model.missings:
            return self.observe(dist, self.model.args[name])
        return self.assume(name, dist)

    def assume(self, name: str, dist: Dist) -> Any:
        return assume(self.rng, self.context, self.sampler, dist, name, self.trace)

    def observe(self, dist: Dist, value: Any) -> Any:
        return observe(self.context, self.sampler, dist, value, self.trace)

    def foreach(self, fn: Callable[[Any], Any], items: Iterable[Any]) -> list[Any]:
        """Run `fn` over `items` on the worker threads.

        Concurrent `assume` statements are safe when the model is evaluated
        thread-safe and each call touches distinct variable names.
        """
        return threads.foreach(fn, items)


def model(fn: Callable[..., Any]) -> ModelGen:
    params = list(inspect.signature(fn).parameters.values())
    if not params:
        raise TypeError(
            f"model function {fn.__name__!r} must take the tilde handle "
            "as its first parameter"
        )
    # Every argument binds by position or by name.
    for p in params:
        if p.kind is not p.POSITIONAL_OR_KEYWORD:
            raise TypeError(
                f"model function {fn.__name__!r} cannot take "
                f"{p.kind.description} parameter {p.name!r}"
            )
    argnames = tuple(p.name for p in params[1:])
    defaults = {p.name: p.default for p in params[1:] if p.default is not p.empty}

    def evaluator(rng, model, trace, sampler, context):
        v = Tilde(rng, model, trace, sampler, context)
        return fn(v, **model.args)

    def generator(*args, **kwargs) -> Model:
        return Model.from_args(evaluator, modelgen.bind(*args, **kwargs), modelgen)

    modelgen = ModelGen(generator, argnames, defaults)
    return modelgen
