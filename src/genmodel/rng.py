"""Mutable random sources built on JAX PRNG keys.

JAX keys are immutable values; model evaluation wants a random source it can
draw from repeatedly, possibly from several worker threads. An `RNG` holds the
current key and hands out fresh subkeys under a lock.
"""

import os
import threading

import jax.random as jrand

from genmodel.core import PRNGKey


class RNG:
    """A lock-protected stream of JAX PRNG keys.

    Example:
        >>> from genmodel.rng import RNG
        >>> rng = RNG(42)
        >>> k1, k2 = rng.next_key(), rng.next_key()  # distinct subkeys
    """

    def __init__(self, seed: int | None = None):
        self._lock = threading.Lock()
        self.seed(seed)

    def seed(self, seed: int | None = None) -> None:
        if seed is None:
            seed = int.from_bytes(os.urandom(4), "little")
        with self._lock:
            self._key = jrand.key(seed)

    def next_key(self) -> PRNGKey:
        with self._lock:
            self._key, sub = jrand.split(self._key)
        return sub

    def split(self, n: int) -> list[PRNGKey]:
        return [self.next_key() for _ in range(n)]

    def __repr__(self) -> str:
        return f"RNG({self._key!r})"


_default_rng = RNG()


def default_rng() -> RNG:
    """The process-wide random source used when none is passed explicitly."""
    return _default_rng
