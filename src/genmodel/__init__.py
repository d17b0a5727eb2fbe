from beartype import BeartypeConf
from beartype.claw import beartype_this_package

conf = BeartypeConf(
    is_color=True,
    is_debug=False,
    is_pep484_tower=True,
    violation_type=TypeError,
)

beartype_this_package(conf=conf)

__version__ = "0.1.0"

from .compiler import Tilde, model
from .contexts import (
    DefaultContext,
    LikelihoodContext,
    MiniBatchContext,
    PriorContext,
)
from .core import Missing, Pytree, missing
from .distributions import (
    Distribution,
    bernoulli,
    beta,
    categorical,
    exponential,
    flip,
    gamma,
    normal,
    uniform,
)
from .models import (
    Model,
    ModelGen,
    SchemaMismatch,
    get_argnames,
    get_defaults,
    get_generator,
    get_missings,
    getmissing,
    logjoint,
    loglikelihood,
    logprior,
)
from .rng import RNG, default_rng
from .samplers import (
    SampleFromPrior,
    SampleFromUniform,
    Sampler,
    SamplerState,
    has_eval_num,
)
from .threads import foreach, nthreads, owner, threadid
from .trace import AbstractTrace, ThreadSafeTrace, Trace

__all__ = [
    "RNG",
    "AbstractTrace",
    "DefaultContext",
    "Distribution",
    "LikelihoodContext",
    "MiniBatchContext",
    "Missing",
    "Model",
    "ModelGen",
    "PriorContext",
    "Pytree",
    "SampleFromPrior",
    "SampleFromUniform",
    "Sampler",
    "SamplerState",
    "SchemaMismatch",
    "ThreadSafeTrace",
    "Tilde",
    "Trace",
    "bernoulli",
    "beta",
    "categorical",
    "default_rng",
    "exponential",
    "flip",
    "foreach",
    "gamma",
    "get_argnames",
    "get_defaults",
    "get_generator",
    "get_missings",
    "getmissing",
    "has_eval_num",
    "logjoint",
    "loglikelihood",
    "logprior",
    "missing",
    "model",
    "normal",
    "nthreads",
    "owner",
    "threadid",
    "uniform",
]
