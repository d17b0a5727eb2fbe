"""Traces: mutable records of variable realizations plus a log-probability.

`AbstractTrace` enumerates every operation model evaluation may perform on a
trace. `Trace` is the default dictionary-backed implementation.
`ThreadSafeTrace` decorates any trace so that several worker threads can
accumulate log-probability into it at once.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import jax.numpy as jnp

from genmodel import threads
from genmodel.core import Any, Array, ArrayLike, Iterable, LogP, zero_logp
from genmodel.distributions import Dist
from genmodel.samplers import get_selector

logger = logging.getLogger(__name__)

# Flags understood by `Trace`:
#   "del"   - resample the variable the next time it is assumed
#   "trans" - the stored value lives in unconstrained (linked) space
FLAGS = ("del", "trans")


class AbstractTrace(ABC):
    ###################
    # Log-probability #
    ###################

    @abstractmethod
    def get_logp(self) -> LogP:
        pass

    @abstractmethod
    def set_logp(self, logp: LogP) -> LogP:
        pass

    @abstractmethod
    def acclogp(self, logp: LogP) -> LogP:
        pass

    @abstractmethod
    def reset_logp(self) -> LogP:
        pass

    #############
    # Variables #
    #############

    @abstractmethod
    def __getitem__(self, key: Any) -> Any:
        pass

    @abstractmethod
    def __setitem__(self, key: Any, value: Any) -> None:
        pass

    @abstractmethod
    def setval(self, name: str, value: Any) -> None:
        pass

    @abstractmethod
    def __contains__(self, name: str) -> bool:
        pass

    @abstractmethod
    def keys(self) -> list[str]:
        pass

    @abstractmethod
    def syms(self) -> list[str]:
        pass

    @abstractmethod
    def is_empty(self) -> bool:
        pass

    @abstractmethod
    def empty(self) -> "AbstractTrace":
        pass

    @abstractmethod
    def push(
        self,
        name: str,
        value: Any,
        dist: Dist,
        gids: Iterable[str] = (),
    ) -> None:
        pass

    @abstractmethod
    def get_dist(self, name: str) -> Dist:
        pass

    @abstractmethod
    def to_dict(self) -> dict[str, Any]:
        pass

    ##################
    # Sampler groups #
    ##################

    @abstractmethod
    def get_gids(self, name: str) -> frozenset[str]:
        pass

    @abstractmethod
    def setgid(self, name: str, gid: str) -> None:
        pass

    @abstractmethod
    def set_retained_del(self, sampler: Any) -> None:
        pass

    #########
    # Flags #
    #########

    @abstractmethod
    def is_flagged(self, name: str, flag: str) -> bool:
        pass

    @abstractmethod
    def set_flag(self, name: str, flag: str) -> None:
        pass

    @abstractmethod
    def unset_flag(self, name: str, flag: str) -> None:
        pass

    ##############
    # Link state #
    ##############

    @abstractmethod
    def link(self) -> None:
        pass

    @abstractmethod
    def invlink(self) -> None:
        pass

    @abstractmethod
    def islinked(self) -> bool:
        pass

    ###################
    # Produce counter #
    ###################

    @abstractmethod
    def get_num_produce(self) -> int:
        pass

    @abstractmethod
    def increment_num_produce(self) -> None:
        pass

    @abstractmethod
    def reset_num_produce(self) -> None:
        pass

    @abstractmethod
    def set_num_produce(self, n: int) -> None:
        pass


@dataclass
class VarRecord:
    value: Any
    dist: Dist
    flags: set[str] = field(default_factory=set)
    order: int = 0
    gids: set[str] = field(default_factory=set)


def _check_flag(flag: str):
    if flag not in FLAGS:
        raise ValueError(f"unknown flag {flag!r}, expected one of {FLAGS}")


def _sym(name: str) -> str:
    return name.split("[", 1)[0]


@dataclass
class Trace(AbstractTrace):
    """The default trace: variables keyed by name, in insertion order.

    Values are returned in the support of their distribution whether or not
    the trace is linked; linking only changes how they are stored.

    Indexing with a sampler instead of a name reads or writes the stored
    values (unconstrained when linked) of every variable the sampler
    selects, flattened into one vector in insertion order. A sampler with a
    `selector` selects the variables tagged with that group id plus the
    untagged ones; any other sampler selects every variable.

    Example:
        >>> from genmodel.trace import Trace
        >>> from genmodel.distributions import normal
        >>> tr = Trace()
        >>> tr.push("m", 0.3, normal(0.0, 1.0))
        >>> tr.acclogp(-1.0)
        >>> tr["m"], tr.get_logp()
    """

    records: dict[str, VarRecord] = field(default_factory=dict)
    logp: Any = field(default_factory=zero_logp)
    num_produce: int = 0

    def get_logp(self) -> LogP:
        return self.logp

    def set_logp(self, logp: LogP) -> LogP:
        self.logp = jnp.asarray(logp)
        return self.logp

    def acclogp(self, logp: LogP) -> LogP:
        self.logp = self.logp + logp
        return self.logp

    def reset_logp(self) -> LogP:
        self.logp = zero_logp(self.logp)
        return self.logp

    def _record(self, name: str) -> VarRecord:
        try:
            return self.records[name]
        except KeyError:
            raise KeyError(f"variable {name!r} is not in the trace") from None

    def _select(self, sampler: Any) -> list[VarRecord]:
        selector = get_selector(sampler)
        if selector is None:
            return list(self.records.values())
        return [
            r for r in self.records.values() if not r.gids or selector in r.gids
        ]

    def __getitem__(self, key: Any) -> Any:
        if isinstance(key, str):
            return self._get(key)
        if isinstance(key, (list, tuple)):
            return [self._get(name) for name in key]
        return self._flat(key)

    def __setitem__(self, key: Any, value: Any) -> None:
        if isinstance(key, str):
            self._set(key, value)
        else:
            self._set_flat(key, value)

    def _get(self, name: str) -> Any:
        record = self._record(name)
        if "trans" in record.flags:
            bijector = record.dist.bijector()
            if bijector is not None:
                return bijector.forward(record.value)
        return record.value

    def _set(self, name: str, value: Any):
        record = self._record(name)
        value = jnp.asarray(value)
        if "trans" in record.flags:
            bijector = record.dist.bijector()
            if bijector is not None:
                value = bijector.inverse(value)
        record.value = value

    def _flat(self, sampler: Any) -> Array:
        records = self._select(sampler)
        if not records:
            return jnp.zeros((0,))
        return jnp.concatenate([jnp.ravel(r.value) for r in records])

    def _set_flat(self, sampler: Any, value: Any):
        records = self._select(sampler)
        flat = jnp.ravel(jnp.asarray(value))
        total = sum(jnp.size(r.value) for r in records)
        if flat.shape[0] != total:
            raise ValueError(
                f"expected {total} values for {type(sampler).__name__}, "
                f"got {flat.shape[0]}"
            )
        start = 0
        for r in records:
            size = jnp.size(r.value)
            chunk = flat[start : start + size]
            r.value = chunk.reshape(jnp.shape(r.value)).astype(r.value.dtype)
            start += size

    def setval(self, name: str, value: Any) -> None:
        """Store `value` as is, without mapping it through a bijector."""
        self._record(name).value = jnp.asarray(value)

    def __contains__(self, name: str) -> bool:
        return name in self.records

    def keys(self) -> list[str]:
        return list(self.records)

    def syms(self) -> list[str]:
        return list(dict.fromkeys(_sym(name) for name in self.records))

    def is_empty(self) -> bool:
        return not self.records

    def empty(self) -> "Trace":
        self.records.clear()
        self.reset_logp()
        self.num_produce = 0
        return self

    def push(
        self,
        name: str,
        value: Any,
        dist: Dist,
        gids: Iterable[str] = (),
    ) -> None:
        if name in self.records:
            raise KeyError(f"variable {name!r} already exists in the trace")
        self.records[name] = VarRecord(
            jnp.asarray(value), dist, order=self.num_produce, gids=set(gids)
        )

    def get_dist(self, name: str) -> Dist:
        return self._record(name).dist

    def get_order(self, name: str) -> int:
        return self._record(name).order

    def to_dict(self) -> dict[str, Any]:
        return {name: self[name] for name in self.records}

    def get_gids(self, name: str) -> frozenset[str]:
        return frozenset(self._record(name).gids)

    def setgid(self, name: str, gid: str) -> None:
        self._record(name).gids.add(gid)

    def set_retained_del(self, sampler: Any) -> None:
        """Flag the variables `sampler` selects for resampling.

        With a produce count of zero every selected variable is flagged
        `"del"`; otherwise only those recorded after the current count.
        """
        n = self.num_produce
        for r in self._select(sampler):
            if n == 0 or r.order > n:
                r.flags.add("del")

    def is_flagged(self, name: str, flag: str) -> bool:
        _check_flag(flag)
        return flag in self._record(name).flags

    def set_flag(self, name: str, flag: str) -> None:
        _check_flag(flag)
        self._record(name).flags.add(flag)

    def unset_flag(self, name: str, flag: str) -> None:
        _check_flag(flag)
        self._record(name).flags.discard(flag)

    def link(self) -> None:
        for record in self.records.values():
            if "trans" in record.flags:
                continue
            bijector = record.dist.bijector()
            if bijector is not None:
                record.value = bijector.inverse(record.value)
            record.flags.add("trans")
        logger.debug("linked %d variables", len(self.records))

    def invlink(self) -> None:
        for record in self.records.values():
            if "trans" not in record.flags:
                continue
            bijector = record.dist.bijector()
            if bijector is not None:
                record.value = bijector.forward(record.value)
            record.flags.discard("trans")
        logger.debug("invlinked %d variables", len(self.records))

    def islinked(self) -> bool:
        return any("trans" in r.flags for r in self.records.values())

    def get_num_produce(self) -> int:
        return self.num_produce

    def increment_num_produce(self) -> None:
        self.num_produce += 1

    def reset_num_produce(self) -> None:
        self.num_produce = 0

    def set_num_produce(self, n: int) -> None:
        self.num_produce = n


class ThreadSafeTrace(AbstractTrace):
    """Wraps a trace with one log-probability accumulator per worker thread.

    `acclogp` only touches the slot of the calling thread, so worker threads
    running disjoint `assume` statements never write the same location. The
    combined value is computed on read as the wrapped trace's log-probability
    plus the sum of all slots.

    Only log-probability is made thread-safe. Every other operation is
    forwarded unchanged to the wrapped trace; concurrent writes to the same
    variable from different threads remain the caller's responsibility.
    """

    def __init__(self, varinfo: AbstractTrace):
        self.varinfo = varinfo
        zero = zero_logp(varinfo.get_logp())
        self.logps = [zero for _ in range(threads.nthreads())]

    @classmethod
    def wrap(cls, varinfo: AbstractTrace) -> "ThreadSafeTrace":
        if isinstance(varinfo, ThreadSafeTrace):
            return varinfo
        return cls(varinfo)

    def _zero_slots(self, like: ArrayLike):
        zero = zero_logp(like)
        for i in range(len(self.logps)):
            self.logps[i] = zero

    def acclogp(self, logp: LogP) -> LogP:
        tid = threads.threadid()
        self.logps[tid] = self.logps[tid] + logp
        return self.get_logp()

    def get_logp(self) -> LogP:
        return self.varinfo.get_logp() + sum(self.logps)

    def reset_logp(self) -> LogP:
        self._zero_slots(self.varinfo.get_logp())
        return self.varinfo.reset_logp()

    def set_logp(self, logp: LogP) -> LogP:
        self._zero_slots(logp)
        return self.varinfo.set_logp(logp)

    def empty(self) -> "ThreadSafeTrace":
        self.varinfo.empty()
        self._zero_slots(self.varinfo.get_logp())
        return self

    # Everything below forwards to the wrapped trace.

    def __getitem__(self, key: Any) -> Any:
        return self.varinfo[key]

    def __setitem__(self, key: Any, value: Any) -> None:
        self.varinfo[key] = value

    def setval(self, name: str, value: Any) -> None:
        self.varinfo.setval(name, value)

    def __contains__(self, name: str) -> bool:
        return name in self.varinfo

    def keys(self) -> list[str]:
        return self.varinfo.keys()

    def syms(self) -> list[str]:
        return self.varinfo.syms()

    def is_empty(self) -> bool:
        return self.varinfo.is_empty()

    def push(
        self,
        name: str,
        value: Any,
        dist: Dist,
        gids: Iterable[str] = (),
    ) -> None:
        self.varinfo.push(name, value, dist, gids)

    def get_dist(self, name: str) -> Dist:
        return self.varinfo.get_dist(name)

    def to_dict(self) -> dict[str, Any]:
        return self.varinfo.to_dict()

    def get_gids(self, name: str) -> frozenset[str]:
        return self.varinfo.get_gids(name)

    def setgid(self, name: str, gid: str) -> None:
        self.varinfo.setgid(name, gid)

    def set_retained_del(self, sampler: Any) -> None:
        self.varinfo.set_retained_del(sampler)

    def is_flagged(self, name: str, flag: str) -> bool:
        return self.varinfo.is_flagged(name, flag)

    def set_flag(self, name: str, flag: str) -> None:
        self.varinfo.set_flag(name, flag)

    def unset_flag(self, name: str, flag: str) -> None:
        self.varinfo.unset_flag(name, flag)

    def link(self) -> None:
        self.varinfo.link()

    def invlink(self) -> None:
        self.varinfo.invlink()

    def islinked(self) -> bool:
        return self.varinfo.islinked()

    def get_num_produce(self) -> int:
        return self.varinfo.get_num_produce()

    def increment_num_produce(self) -> None:
        self.varinfo.increment_num_produce()

    def reset_num_produce(self) -> None:
        self.varinfo.reset_num_produce()

    def set_num_produce(self, n: int) -> None:
        self.varinfo.set_num_produce(n)

    def __repr__(self) -> str:
        return f"ThreadSafeTrace({self.varinfo!r}, nthreads={len(self.logps)})"
