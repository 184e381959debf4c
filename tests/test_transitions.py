import numpy as np
import pytest

import adahmc
from adahmc import integrators, systems, transitions
from adahmc.states import ChainState

SEED = 3046987125
STATE_DIM = 3


@pytest.fixture
def rng():
    return np.random.default_rng(SEED)


@pytest.fixture
def system():
    return systems.EuclideanMetricSystem(
        neg_log_dens=lambda q: 0.5 * np.sum(q**2),
        grad_neg_log_dens=lambda q: q,
    )


@pytest.fixture
def integrator(system):
    return integrators.LeapfrogIntegrator(system, 0.2)


@pytest.fixture
def chain_state(rng):
    pos, mom = rng.standard_normal((2, STATE_DIM))
    return ChainState(pos=pos, mom=mom, dir=1)


def _check_common_stats(stats):
    for key in ("n_step", "accept_stat", "diverging", "accepted", "energy_error"):
        assert key in stats, f"statistic {key} missing"
    assert 0 <= stats["accept_stat"] <= 1
    assert isinstance(stats["n_step"], int)


class IntegrationTransitionTests:
    def test_sample_stats(self, transition, chain_state, rng):
        _, stats = transition.sample(chain_state, rng)
        _check_common_stats(stats)

    def test_sample_rejected_state_identical(self, transition, chain_state, rng):
        init_pos = chain_state.pos.copy()
        for _ in range(20):
            state = chain_state.copy()
            next_state, stats = transition.sample(state, rng)
            if not stats["accepted"]:
                assert np.all(next_state.pos == init_pos)
                assert stats["energy_error"] == 0

    def test_sample_accepted_energy_error(self, transition, chain_state, rng):
        h_init = transition.system.h(chain_state)
        next_state, stats = transition.sample(chain_state.copy(), rng)
        if stats["accepted"]:
            assert np.isclose(
                stats["energy_error"], transition.system.h(next_state) - h_init
            )


class TestMetropolisStaticIntegrationTransition(IntegrationTransitionTests):
    @pytest.fixture
    def transition(self, system, integrator):
        return transitions.MetropolisStaticIntegrationTransition(
            system, integrator, n_step=10
        )

    def test_n_step(self, transition, chain_state, rng):
        _, stats = transition.sample(chain_state, rng)
        assert stats["n_step"] == 10
        assert stats["step_size"] == transition.integrator.step_size

    def test_non_positive_n_step_raises(self, system, integrator):
        with pytest.raises(ValueError):
            transitions.MetropolisStaticIntegrationTransition(system, integrator, 0)


class TestMetropolisFixedTimeIntegrationTransition(IntegrationTransitionTests):
    @pytest.fixture
    def transition(self, system, integrator):
        return transitions.MetropolisFixedTimeIntegrationTransition(
            system, integrator, integration_time=1.0
        )

    @pytest.mark.parametrize(
        "step_size,n_step", [(0.2, 5), (0.3, 3), (0.6, 1), (2.0, 1)]
    )
    def test_n_step(self, transition, chain_state, rng, step_size, n_step):
        transition.integrator.step_size = step_size
        assert transition.n_step == n_step
        _, stats = transition.sample(chain_state, rng)
        assert stats["n_step"] == n_step


class TestMultinomialDynamicIntegrationTransition(IntegrationTransitionTests):
    @pytest.fixture(
        params=(
            transitions.riemannian_no_u_turn_criterion,
            transitions.euclidean_no_u_turn_criterion,
        )
    )
    def transition(self, system, integrator, request):
        return transitions.MultinomialDynamicIntegrationTransition(
            system, integrator, termination_criterion=request.param
        )

    def test_tree_stats(self, transition, chain_state, rng):
        _, stats = transition.sample(chain_state, rng)
        assert 1 <= stats["tree_depth"] <= transition.max_tree_depth
        n_step, tree_depth = stats["n_step"], stats["tree_depth"]
        assert 2 ** (tree_depth - 1) <= n_step < 2**tree_depth
        assert 0 <= stats["reject_prob"] <= 1
        assert stats["accept_stat"] == stats["av_metrop_accept_prob"]

    def test_max_tree_depth_bounds_steps(self, system, chain_state, rng):
        integrator = integrators.LeapfrogIntegrator(system, 1e-3)
        transition = transitions.MultinomialDynamicIntegrationTransition(
            system, integrator, max_tree_depth=3
        )
        _, stats = transition.sample(chain_state, rng)
        assert stats["n_step"] == 2**3 - 1
        assert stats["tree_depth"] == 3
        assert not stats["diverging"]

    def test_divergence_flagged(self, system, chain_state, rng):
        integrator = integrators.LeapfrogIntegrator(system, 50.0)
        transition = transitions.MultinomialDynamicIntegrationTransition(
            system, integrator
        )
        init_pos = chain_state.pos.copy()
        next_state, stats = transition.sample(chain_state, rng)
        assert stats["diverging"]
        assert stats["accept_stat"] == 0
        assert stats["tree_depth"] == 1
        assert not stats["accepted"]
        assert np.all(np.isfinite(next_state.pos))
        assert np.all(next_state.pos == init_pos)

    def test_invalid_max_tree_depth_raises(self, system, integrator):
        with pytest.raises(ValueError):
            transitions.MultinomialDynamicIntegrationTransition(
                system, integrator, max_tree_depth=0
            )


def test_metropolis_non_finite_energy_rejected_and_flagged(rng):
    system = systems.EuclideanMetricSystem(
        neg_log_dens=lambda q: 0.5 * np.sum(q**2) if np.all(abs(q) < 3) else np.inf,
        grad_neg_log_dens=lambda q: q,
    )
    integrator = integrators.LeapfrogIntegrator(system, 1.0)
    transition = transitions.MetropolisStaticIntegrationTransition(
        system, integrator, n_step=20
    )
    state = ChainState(pos=np.zeros(1), mom=np.array([5.0]), dir=1)
    next_state, stats = transition.sample(state, rng)
    assert stats["diverging"]
    assert not stats["accepted"]
    assert stats["accept_stat"] == 0
    assert next_state.pos[0] == 0


def test_independent_momentum_transition_samples_with_metric_covariance(rng):
    var = np.array([0.5, 2.0])
    system = systems.EuclideanMetricSystem(
        neg_log_dens=lambda q: 0.5 * np.sum(q**2),
        metric=var,
        grad_neg_log_dens=lambda q: q,
    )
    transition = transitions.IndependentMomentumTransition(system)
    state = ChainState(pos=np.zeros(2), mom=np.zeros(2), dir=1)
    moms = []
    for _ in range(5000):
        state, stats = transition.sample(state, rng)
        assert stats is None
        moms.append(state.mom)
    assert np.allclose(np.var(moms, axis=0), var, rtol=0.1)


@pytest.mark.parametrize(
    "transition_factory",
    [
        lambda system, integrator: transitions.MetropolisStaticIntegrationTransition(
            system, integrator, n_step=10
        ),
        lambda system, integrator: transitions.MultinomialDynamicIntegrationTransition(
            system, integrator
        ),
    ],
)
def test_standard_normal_moments(rng, transition_factory):
    system = systems.EuclideanMetricSystem(
        neg_log_dens=lambda q: 0.5 * np.sum(q**2),
        grad_neg_log_dens=lambda q: q,
    )
    integrator = integrators.LeapfrogIntegrator(system, 0.1)
    transition = transition_factory(system, integrator)
    momentum_transition = transitions.IndependentMomentumTransition(system)
    state = ChainState(pos=np.zeros(1), mom=np.zeros(1), dir=1)
    n_sample = 5000
    samples = np.empty(n_sample)
    for i in range(n_sample):
        state, _ = momentum_transition.sample(state, rng)
        state, _ = transition.sample(state, rng)
        samples[i] = state.pos[0]
    assert abs(samples.mean()) < 0.1
    assert abs(samples.var() - 1) < 0.2


def test_stats_keys_for_divergence_error_type():
    stats = {"diverging": False}
    adahmc.transitions._process_integrator_error(
        adahmc.errors.HamiltonianDivergenceError("diverged"), stats
    )
    assert stats["diverging"]
