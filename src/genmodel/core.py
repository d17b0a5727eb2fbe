from dataclasses import field
from typing import overload

import beartype.typing as btyping
import jax.numpy as jnp
import jaxtyping as jtyping
import penzai.pz as pz
from typing_extensions import dataclass_transform

##########
# Typing #
##########

Any = btyping.Any
PRNGKey = jtyping.PRNGKeyArray
Array = jtyping.Array
ArrayLike = jtyping.ArrayLike
FloatArray = jtyping.Float[jtyping.Array, "..."]
Callable = btyping.Callable
Iterable = btyping.Iterable
Sequence = btyping.Sequence
Mapping = btyping.Mapping
Optional = btyping.Optional
TypeVar = btyping.TypeVar

R = TypeVar("R")

#######################
# Probabilistic types #
#######################

LogP = ArrayLike
Density = FloatArray


def zero_logp(like: LogP | None = None) -> FloatArray:
    """The additive identity for log-probability accumulation.

    When `like` is given the result has its dtype and shape, so per-thread
    accumulators match the scalar they are folded into.
    """
    if like is None:
        return jnp.array(0.0)
    return jnp.zeros_like(jnp.asarray(like))


##########
# Pytree #
##########


class Pytree(pz.Struct):
    """`Pytree` is an abstract base class which registers a class with JAX's `Pytree`
    system, and gives it an immutable dataclass constructor.

    Models, model generators, contexts and samplers are all `Pytree`
    dataclasses: they are built once and never mutated. Fields are declared as

    * `Pytree.static(...)`: the value is a Python literal or callable that is
    embedded in the `PyTreeDef` of the instance (procedures, names).
    * `Pytree.field(...)` or no annotation: the value is an ordinary pytree
    leaf or subtree (bound arguments, parameters).
    """

    @staticmethod
    @overload
    def dataclass(
        incoming: None = None,
        /,
        **kwargs,
    ) -> Callable[[type[R]], type[R]]: ...

    @staticmethod
    @overload
    def dataclass(
        incoming: type[R],
        /,
        **kwargs,
    ) -> type[R]: ...

    @dataclass_transform(
        frozen_default=True,
    )
    @staticmethod
    def dataclass(
        incoming: type[R] | None = None,
        /,
        **kwargs,
    ) -> type[R] | Callable[[type[R]], type[R]]:
        """
        Denote that a class (which is inheriting `Pytree`) should be treated
        as a frozen dataclass.

        Examples
        --------

        ```{python}
        from genmodel.core import Pytree


        @Pytree.dataclass
        class Scaled(Pytree):
            scale: float
            label: str = Pytree.static(default="scaled")


        Scaled(2.0)
        ```
        """

        return pz.pytree_dataclass(
            incoming,
            overwrite_parent_init=True,
            **kwargs,
        )

    @staticmethod
    def static(**kwargs):
        """Declare a field of a `Pytree` dataclass to be static.
        Fields which are provided with default values must come after
        required fields in the dataclass declaration."""
        return field(metadata={"pytree_node": False}, **kwargs)

    @staticmethod
    def field(**kwargs):
        """Declare a field of a `Pytree` dataclass to be dynamic.
        Alternatively, one can leave the annotation off in the declaration."""
        return field(**kwargs)


###########
# Missing #
###########


class Missing:
    """Type of the `missing` placeholder.

    A model argument bound to `missing` is a random variable to be sampled
    rather than an observation. There is exactly one instance.
    """

    _instance: "Missing | None" = None

    def __new__(cls) -> "Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "missing"

    def __reduce__(self):
        return (Missing, ())


missing = Missing()


def ismissing(value: Any) -> bool:
    # Structural: a container holding `missing` is not itself missing.
    return isinstance(value, Missing)
