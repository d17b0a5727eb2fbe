"""Models and model generators.

A `ModelGen` binds a generative procedure to a fixed, ordered tuple of
argument names and their defaults. Calling it produces `Model` values: the
procedure together with a snapshot of bound arguments and the names of the
arguments that are `missing` (random variables to be sampled rather than
observed).

A `Model` is evaluated against a caller-owned trace:

    model(rng, trace, sampler, context)

which resets the trace's log-probability and runs

    model.f(rng, model, trace, sampler, context)

so that the procedure can accumulate whatever log-density terms the context
asks for.
"""

import logging
import warnings

from genmodel import threads
from genmodel.contexts import DefaultContext, LikelihoodContext, PriorContext
from genmodel.core import (
    Any,
    Callable,
    LogP,
    Pytree,
    Sequence,
    ismissing,
    missing,
)
from genmodel.rng import default_rng
from genmodel.samplers import SampleFromPrior, has_eval_num
from genmodel.trace import AbstractTrace, ThreadSafeTrace, Trace

logger = logging.getLogger(__name__)


class SchemaMismatch(ValueError):
    pass


############
# ModelGen #
############


@Pytree.dataclass
class ModelGen(Pytree):
    """A generator of `Model` values for one model definition.

    Attributes:
        generator: Callable which builds a `Model` from arguments
        argnames: Ordered argument names, fixed for every model it generates
        defaults: Default values for a subset of `argnames`
    """

    generator: Callable[..., Any] = Pytree.static()
    argnames: tuple[str, ...] = Pytree.static()
    defaults: dict[str, Any] = Pytree.field(default_factory=dict)

    def __post_init__(self):
        unknown = [name for name in self.defaults if name not in self.argnames]
        if unknown:
            raise SchemaMismatch(
                f"defaults {unknown} are not arguments of the model "
                f"(arguments: {self.argnames})"
            )

    def __call__(self, *args, **kwargs) -> Any:
        return self.generator(*args, **kwargs)

    def get_argnames(self) -> tuple[str, ...]:
        return self.argnames

    def get_defaults(self) -> dict[str, Any]:
        return self.defaults

    def bind(self, *args, **kwargs) -> dict[str, Any]:
        """Bind call arguments to argument names.

        Positional arguments fill names in order, keyword arguments fill
        names by name, then defaults apply. Anything still unbound is
        `missing`.
        """
        if len(args) > len(self.argnames):
            raise TypeError(
                f"model takes {len(self.argnames)} arguments "
                f"but {len(args)} were given"
            )
        bound = dict(zip(self.argnames, args))
        for name, value in kwargs.items():
            if name not in self.argnames:
                raise TypeError(f"model got an unexpected argument {name!r}")
            if name in bound:
                raise TypeError(f"model got multiple values for argument {name!r}")
            bound[name] = value
        return {
            name: bound[name] if name in bound else self.defaults.get(name, missing)
            for name in self.argnames
        }


#########
# Model #
#########


@Pytree.dataclass
class Model(Pytree):
    """A generative procedure with bound arguments.

    Arguments named in `missings` are treated as random variables rather than
    observations. `Model.from_args` deduces them from the arguments bound to
    `missing`; passing `missings` directly overrides the deduction and is not
    checked against `args`.

    Attributes:
        f: Generative procedure, called as `f(rng, model, trace, sampler, context)`
        args: Bound arguments, in argument order
        modelgen: The generator this model came from
        missings: Names of the arguments to be sampled

    Example:
        >>> from genmodel import Trace, missing, model, normal
        >>>
        >>> @model
        ... def gdemo(v, x, y=2.0):
        ...     m = v("m", normal(0.0, 1.0))
        ...     x = v("x", normal(m, 1.0))
        ...     v("y", normal(m, 1.0))
        ...     return m
        >>>
        >>> m = gdemo(missing)
        >>> m.get_missings()  # ("x",)
        >>> tr = Trace()
        >>> m(tr)  # samples m and x, observes y
    """

    f: Callable[..., Any] = Pytree.static()
    args: dict[str, Any]
    modelgen: ModelGen
    missings: tuple[str, ...] = Pytree.static(default=())

    def __post_init__(self):
        unknown = [name for name in self.missings if name not in self.args]
        if unknown:
            warnings.warn(
                f"missings {unknown} are not arguments of the model; "
                "they are kept as given"
            )

    @classmethod
    def from_args(
        cls,
        f: Callable[..., Any],
        args: dict[str, Any],
        modelgen: ModelGen,
    ) -> "Model":
        if tuple(args) != modelgen.argnames:
            raise SchemaMismatch(
                f"arguments {tuple(args)} do not match the model's "
                f"arguments {modelgen.argnames}"
            )
        missings = tuple(name for name, value in args.items() if ismissing(value))
        return cls(f, dict(args), modelgen, missings)

    @classmethod
    def from_modelgen(
        cls,
        modelgen: ModelGen,
        args: dict[str, Any],
        missings: Sequence[str],
    ) -> "Model":
        """A model from `modelgen`'s procedure with `args` and an explicit
        `missings`."""
        model = modelgen(**args)
        return cls(model.f, dict(args), modelgen, tuple(missings))

    def __call__(self, *args, threadsafe: bool | None = None) -> Any:
        """Evaluate the model.

        Accepted forms, each filling in defaults for the next:

            model()
            model(trace, [sampler, [context]])
            model(rng, trace, [sampler, [context]])

        The trace's log-probability is reset first, and `sampler.state.eval_num`
        is incremented when the sampler has one. With `threadsafe=None` the
        process-wide worker count picks the path: a single worker thread
        evaluates against `trace` directly, more than one wraps it in a
        `ThreadSafeTrace`. `threadsafe=True` / `False` forces a path.
        """
        if not args:
            return self(Trace(), threadsafe=threadsafe)
        if isinstance(args[0], AbstractTrace):
            return self(default_rng(), *args, threadsafe=threadsafe)
        return self.evaluate(*args, threadsafe=threadsafe)

    def evaluate(
        self,
        rng: Any,
        trace: AbstractTrace,
        sampler: Any = None,
        context: Any = None,
        *,
        threadsafe: bool | None = None,
    ) -> Any:
        sampler = SampleFromPrior() if sampler is None else sampler
        context = DefaultContext() if context is None else context
        if threadsafe is None:
            threadsafe = threads.nthreads() != 1
        if threadsafe:
            return evaluate_threadsafe(rng, self, trace, sampler, context)
        else:
            return evaluate_threadunsafe(rng, self, trace, sampler, context)

    def get_argnames(self) -> tuple[str, ...]:
        return tuple(self.args)

    def get_missings(self) -> tuple[str, ...]:
        return self.missings

    def get_generator(self) -> ModelGen:
        return self.modelgen


def _prepare(trace: AbstractTrace, sampler: Any):
    trace.reset_logp()
    if has_eval_num(sampler):
        sampler.state.eval_num += 1


def evaluate_threadunsafe(
    rng: Any,
    model: Model,
    trace: AbstractTrace,
    sampler: Any,
    context: Any,
) -> Any:
    """Evaluate `model` directly against `trace`.

    If the procedure accumulates log-probability from several threads the
    result is undefined; use `evaluate_threadsafe` then.
    """
    _prepare(trace, sampler)
    logger.debug("evaluating model%s thread-unsafe", model.get_argnames())
    return model.f(rng, model, trace, sampler, context)


def evaluate_threadsafe(
    rng: Any,
    model: Model,
    trace: AbstractTrace,
    sampler: Any,
    context: Any,
) -> Any:
    """Evaluate `model` against `trace` wrapped in a `ThreadSafeTrace`.

    Worker threads may run `assume` statements concurrently. The calling
    thread owns slot 0, whether or not it is the main thread. After the
    procedure returns, the accumulated log-probability is written back into
    `trace`. If it raises, nothing is written back and the log-probability
    of `trace` stays at zero.
    """
    _prepare(trace, sampler)
    wrapper = ThreadSafeTrace.wrap(trace)
    logger.debug(
        "evaluating model%s thread-safe over %d threads",
        model.get_argnames(),
        len(wrapper.logps),
    )
    with threads.owner():
        result = model.f(rng, model, wrapper, sampler, context)
    trace.set_logp(wrapper.get_logp())
    return result


#####################
# Derived densities #
#####################


def logjoint(model: Model, trace: AbstractTrace | None = None) -> LogP:
    """Log joint probability of the variables in `trace` under `model`.

    See also `logprior` and `loglikelihood`.
    """
    trace = Trace() if trace is None else trace
    model(trace, SampleFromPrior(), DefaultContext())
    return trace.get_logp()


def logprior(model: Model, trace: AbstractTrace | None = None) -> LogP:
    """Log prior probability of the variables in `trace` under `model`."""
    trace = Trace() if trace is None else trace
    model(trace, SampleFromPrior(), PriorContext())
    return trace.get_logp()


def loglikelihood(model: Model, trace: AbstractTrace | None = None) -> LogP:
    """Log likelihood of the observations of `model` given `trace`."""
    trace = Trace() if trace is None else trace
    model(trace, SampleFromPrior(), LikelihoodContext())
    return trace.get_logp()


#############
# Accessors #
#############


def get_argnames(x: Model | ModelGen) -> tuple[str, ...]:
    return x.get_argnames()


def get_defaults(modelgen: ModelGen) -> dict[str, Any]:
    return modelgen.get_defaults()


def get_missings(model: Model) -> tuple[str, ...]:
    return model.get_missings()


def getmissing(model: Model) -> tuple[str, ...]:
    warnings.warn(
        "getmissing is deprecated, use get_missings",
        DeprecationWarning,
        stacklevel=2,
    )
    return get_missings(model)


def get_generator(model: Model) -> ModelGen:
    return model.get_generator()
