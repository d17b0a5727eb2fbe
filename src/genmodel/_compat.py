"""Compatibility helpers between TensorFlow Probability and newer JAX releases."""

from __future__ import annotations

import jax


def ensure_jax_tfp_compat() -> None:
    """Restore the JAX attribute that the TFP JAX substrate still reads.

    TFP 0.25 references ``jax.interpreters.xla.pytype_aval_mappings``, which
    JAX 0.7 moved to ``jax.core.pytype_aval_mappings``. Must run before
    ``tensorflow_probability.substrates.jax`` is imported.
    """

    xla_interpreter = jax.interpreters.xla
    if not hasattr(xla_interpreter, "pytype_aval_mappings"):
        xla_interpreter.pytype_aval_mappings = jax.core.pytype_aval_mappings
