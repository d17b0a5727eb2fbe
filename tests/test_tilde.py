"""
Tests for tilde statements, samplers and the `@model` decorator.

The context table: which log-density terms `assume` and `observe`
accumulate under each context, checked against the distribution's own
log density.
"""

import jax
import jax.numpy as jnp
import pytest

from genmodel import threads
from genmodel.compiler import Tilde, model
from genmodel.contexts import (
    DefaultContext,
    LikelihoodContext,
    MiniBatchContext,
    PriorContext,
)
from genmodel.core import missing
from genmodel.distributions import exponential, normal
from genmodel.models import logjoint, loglikelihood, logprior
from genmodel.rng import RNG
from genmodel.samplers import SampleFromPrior, SampleFromUniform, Sampler
from genmodel.tilde import assume, observe, tilde_observe
from genmodel.trace import ThreadSafeTrace, Trace


@pytest.fixture
def rng():
    return RNG(1)


@pytest.fixture
def one_thread(monkeypatch):
    monkeypatch.setattr(threads, "_nthreads", 1)


@pytest.fixture
def four_threads(monkeypatch):
    monkeypatch.setattr(threads, "_nthreads", 4)


class TestAssume:
    """Test value resolution and accumulation for latent variables."""

    def test_draws_and_pushes_new_variables(self, rng):
        tr = Trace()
        d = normal(0.0, 1.0)
        value = assume(rng, DefaultContext(), SampleFromPrior(), d, "m", tr)
        assert "m" in tr
        assert jnp.allclose(tr["m"], value)
        assert jnp.allclose(tr.get_logp(), d.logpdf(value))

    def test_reuses_existing_value(self, rng):
        tr = Trace()
        d = normal(0.0, 1.0)
        tr.push("m", 0.3, d)
        value = assume(rng, DefaultContext(), SampleFromPrior(), d, "m", tr)
        assert jnp.allclose(value, 0.3)

    def test_del_flag_resamples(self, rng):
        tr = Trace()
        d = normal(100.0, 1.0)
        tr.push("m", 0.3, d)
        tr.set_flag("m", "del")
        value = assume(rng, DefaultContext(), SampleFromPrior(), d, "m", tr)
        assert value > 50.0
        assert not tr.is_flagged("m", "del")
        assert jnp.allclose(tr["m"], value)

    def test_prior_context_counts_assume(self, rng):
        tr = Trace()
        d = normal(0.0, 2.0)
        tr.push("m", 0.7, d)
        assume(rng, PriorContext(), SampleFromPrior(), d, "m", tr)
        assert jnp.allclose(tr.get_logp(), d.logpdf(0.7))

    def test_likelihood_context_ignores_assume(self, rng):
        tr = Trace()
        d = normal(0.0, 2.0)
        value = assume(rng, LikelihoodContext(), SampleFromPrior(), d, "m", tr)
        assert "m" in tr
        assert jnp.allclose(tr["m"], value)
        assert jnp.allclose(tr.get_logp(), 0.0)

    def test_context_vars_override_trace(self, rng):
        tr = Trace()
        d = normal(0.0, 1.0)
        tr.push("m", 0.3, d)
        ctx = PriorContext(vars={"m": 1.0})
        value = assume(rng, ctx, SampleFromPrior(), d, "m", tr)
        assert jnp.allclose(value, 1.0)
        assert jnp.allclose(tr["m"], 1.0)
        assert jnp.allclose(tr.get_logp(), d.logpdf(1.0))

    def test_minibatch_delegates_assume(self, rng):
        tr = Trace()
        d = normal(0.0, 1.0)
        tr.push("m", 0.5, d)
        ctx = MiniBatchContext(DefaultContext(), 10.0)
        assume(rng, ctx, SampleFromPrior(), d, "m", tr)
        assert jnp.allclose(tr.get_logp(), d.logpdf(0.5))


class TestObserve:
    """Test accumulation for observations."""

    @pytest.mark.parametrize(
        "context, scale",
        [
            (DefaultContext(), 1.0),
            (LikelihoodContext(), 1.0),
            (PriorContext(), 0.0),
            (MiniBatchContext(DefaultContext(), 4.0), 4.0),
            (MiniBatchContext(PriorContext(), 4.0), 0.0),
        ],
    )
    def test_context_table(self, context, scale):
        tr = Trace()
        d = normal(1.0, 0.5)
        assert observe(context, SampleFromPrior(), d, 1.3, tr) == 1.3
        assert jnp.allclose(tr.get_logp(), scale * d.logpdf(1.3))

    def test_vector_observations_sum(self):
        tr = Trace()
        ys = jnp.array([0.1, -0.2, 0.4])
        observe(DefaultContext(), SampleFromPrior(), normal(0.0, 1.0), ys, tr)
        expected = sum(normal(0.0, 1.0).logpdf(y) for y in ys)
        assert jnp.allclose(tr.get_logp(), expected)

    def test_observe_increments_produce_counter(self):
        tr = Trace()
        observe(DefaultContext(), SampleFromPrior(), normal(0.0, 1.0), 0.0, tr)
        assert tr.get_num_produce() == 1

    def test_unknown_context_has_no_rule(self):
        class Custom:
            pass

        with pytest.raises(NotImplementedError, match="Custom"):
            observe(Custom(), SampleFromPrior(), normal(0.0, 1.0), 0.0, Trace())

    def test_custom_context_can_register(self):
        class Tempered:
            pass

        @tilde_observe.register(Tempered)
        def _(context, sampler, dist, value, trace):
            return 0.5 * dist.logpdf(value)

        tr = Trace()
        observe(Tempered(), SampleFromPrior(), normal(0.0, 1.0), 0.2, tr)
        assert jnp.allclose(tr.get_logp(), 0.5 * normal(0.0, 1.0).logpdf(0.2))


class TestSamplers:
    """Test how samplers draw missing values."""

    def test_uniform_draws_inside_support(self, rng):
        sampler = SampleFromUniform()
        for _ in range(10):
            assert sampler.draw(rng, exponential(1.0)) > 0.0

    def test_uniform_draws_in_radius(self, rng):
        sampler = SampleFromUniform(radius=2.0)
        for _ in range(10):
            assert jnp.abs(sampler.draw(rng, normal(100.0, 1.0))) <= 2.0

    def test_sampler_draws_from_prior(self, rng):
        assert Sampler().draw(rng, normal(100.0, 1.0)) > 50.0

    def test_selector_tags_assumed_variables(self, rng):
        tr = Trace()
        tr.push("old", 0.0, normal(0.0, 1.0))
        hmc = Sampler(selector="hmc")
        assume(rng, DefaultContext(), hmc, normal(0.0, 1.0), "new", tr)
        assume(rng, DefaultContext(), hmc, normal(0.0, 1.0), "old", tr)
        assume(rng, DefaultContext(), SampleFromPrior(), normal(0.0, 1.0), "free", tr)
        assert tr.get_gids("new") == {"hmc"}
        assert tr.get_gids("old") == {"hmc"}
        assert tr.get_gids("free") == frozenset()

    def test_retained_variables_are_redrawn(self, rng):
        tr = Trace()
        sampler = Sampler(selector="pg")
        assume(rng, DefaultContext(), sampler, normal(100.0, 1.0), "m", tr)
        tr["m"] = 0.0
        tr.set_retained_del(sampler)
        value = assume(rng, DefaultContext(), sampler, normal(100.0, 1.0), "m", tr)
        assert value > 50.0

    def test_sampler_structure_is_hashable(self):
        sampler = Sampler()
        treedef = jax.tree_util.tree_structure(sampler)
        assert isinstance(hash(treedef), int)
        sampler.state.eval_num += 1
        assert jax.tree_util.tree_structure(sampler) == treedef


@model
def gdemo(v, x, y=2.0):
    s = v("s", exponential(1.0))
    m = v("m", normal(0.0, 1.0))
    x = v("x", normal(m, s))
    v("y", normal(m, s))
    return m


class TestModelDecorator:
    """Test models written with `@model`."""

    def test_argnames_and_defaults(self):
        assert gdemo.get_argnames() == ("x", "y")
        assert gdemo.get_defaults() == {"y": 2.0}

    def test_missing_arguments_are_assumed(self, rng):
        m = gdemo(missing)
        assert m.get_missings() == ("x",)
        tr = Trace()
        m(rng, tr, threadsafe=False)
        assert set(tr.keys()) == {"s", "m", "x"}

    def test_observed_arguments_are_not_stored(self, rng):
        tr = Trace()
        gdemo(1.5)(rng, tr, threadsafe=False)
        assert set(tr.keys()) == {"s", "m"}
        assert tr.get_num_produce() == 2

    def test_logjoint_matches_manual_density(self, rng, one_thread):
        m = gdemo(1.5, 2.0)
        tr = Trace()
        m(rng, tr)
        s, mu = tr["s"], tr["m"]
        prior = exponential(1.0).logpdf(s) + normal(0.0, 1.0).logpdf(mu)
        likelihood = normal(mu, s).logpdf(1.5) + normal(mu, s).logpdf(2.0)
        assert jnp.allclose(logprior(m, tr), prior, atol=1e-5)
        assert jnp.allclose(loglikelihood(m, tr), likelihood, atol=1e-5)
        assert jnp.allclose(logjoint(m, tr), prior + likelihood, atol=1e-5)

    @pytest.mark.parametrize("threadsafe", [False, True])
    def test_joint_is_prior_plus_likelihood(self, rng, threadsafe):
        m = gdemo(1.5)
        tr = Trace()
        m(rng, tr, threadsafe=threadsafe)
        joint = m(rng, tr, SampleFromPrior(), DefaultContext(), threadsafe=threadsafe)
        assert jnp.allclose(joint, tr["m"])
        j = tr.get_logp()
        m(rng, tr, SampleFromPrior(), PriorContext(), threadsafe=threadsafe)
        p = tr.get_logp()
        m(rng, tr, SampleFromPrior(), LikelihoodContext(), threadsafe=threadsafe)
        lik = tr.get_logp()
        assert jnp.allclose(j, p + lik, atol=1e-5)

    @pytest.mark.threads
    def test_parallel_assumes(self, rng, four_threads):
        @model
        def iid(v, n=16):
            mu = v("mu", normal(0.0, 1.0))
            return v.foreach(lambda i: v(f"z[{i}]", normal(mu, 1.0)), range(n))

        m = iid()
        tr = Trace()
        zs = m(rng, tr)
        assert len(zs) == 16
        assert tr.syms() == ["mu", "z"]
        expected = normal(0.0, 1.0).logpdf(tr["mu"]) + sum(
            normal(tr["mu"], 1.0).logpdf(tr[f"z[{i}]"]) for i in range(16)
        )
        assert jnp.allclose(tr.get_logp(), expected, atol=1e-4)

    def test_handle_exposes_evaluation(self, rng):
        seen = []

        @model
        def probe(v):
            seen.append(v)

        m = probe()
        tr = Trace()
        m(rng, tr, threadsafe=True)
        v = seen[0]
        assert isinstance(v, Tilde)
        assert v.model is m
        assert v.rng is rng
        assert isinstance(v.trace, ThreadSafeTrace)
        assert v.trace.varinfo is tr

    def test_model_function_needs_a_handle(self):
        with pytest.raises(TypeError, match="tilde handle"):

            @model
            def bad():
                pass

    def test_model_function_rejects_varargs(self):
        with pytest.raises(TypeError, match="cannot take"):

            @model
            def bad(v, *xs):
                pass

    def test_model_function_rejects_keyword_only(self):
        with pytest.raises(TypeError, match="keyword-only parameter 'y'"):

            @model
            def bad(v, x, *, y=1.0):
                pass
