"""Evaluation contexts.

A context is an opaque token threaded through a model evaluation. The model
layer never looks inside it; tilde statements (`genmodel.tilde`) dispatch on
its type to decide which log-density terms to accumulate.
"""

from genmodel.core import Any, Pytree


@Pytree.dataclass
class DefaultContext(Pytree):
    """Accumulate prior and likelihood terms: the log joint."""


@Pytree.dataclass
class PriorContext(Pytree):
    """Accumulate prior terms only.

    Attributes:
        vars: Optional values for named latent variables, used in place of the
            ones stored in the trace.
    """

    vars: dict[str, Any] | None = None


@Pytree.dataclass
class LikelihoodContext(Pytree):
    """Accumulate likelihood terms only.

    Attributes:
        vars: Optional values for named latent variables, used in place of the
            ones stored in the trace.
    """

    vars: dict[str, Any] | None = None


@Pytree.dataclass
class MiniBatchContext(Pytree):
    """Scale likelihood terms of an inner context.

    Used when a model is evaluated on a minibatch of the data:
    `loglike_scalar` is typically `num_data / batch_size`.
    """

    context: Any = Pytree.field(default_factory=DefaultContext)
    loglike_scalar: float = 1.0
