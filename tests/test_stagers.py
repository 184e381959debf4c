import logging

import pytest

import adahmc

N_MAIN_ITER = 1


class StagerTests:
    def test_stages(self, stager, n_warm_up_iter, adapters):
        stages = stager.stages(n_warm_up_iter, N_MAIN_ITER, adapters)
        assert isinstance(stages, dict)
        n_total_iter = 0
        for stage_key, stage in stages.items():
            assert isinstance(stage_key, str)
            assert isinstance(stage, adahmc.stagers.ChainStage)
            assert stage.n_iter > 0
            assert stage.adapters is None or isinstance(stage.adapters, list)
            n_total_iter += stage.n_iter
        assert n_total_iter == n_warm_up_iter + N_MAIN_ITER

    def test_final_stage_non_adaptive(self, stager, n_warm_up_iter, adapters):
        stages = stager.stages(n_warm_up_iter, None, adapters)
        label, stage = list(stages.items())[-1]
        assert label == "Main non-adaptive"
        assert stage.adapters is None
        assert stage.n_iter is None


class TestWarmUpStager(StagerTests):
    @pytest.fixture
    def adapters(self):
        return [adahmc.adapters.DualAveragingStepSizeAdapter()]

    @pytest.fixture
    def stager(self):
        return adahmc.stagers.WarmUpStager()

    @pytest.fixture(params=(1, 10, 1000))
    def n_warm_up_iter(self, request):
        return request.param

    def test_no_warm_up_stage_when_zero_iterations(self, stager, adapters):
        stages = stager.stages(0, N_MAIN_ITER, adapters)
        assert list(stages.keys()) == ["Main non-adaptive"]


class TestWindowedWarmUpStager(StagerTests):
    @pytest.fixture
    def adapters(self):
        return [
            adahmc.adapters.DualAveragingStepSizeAdapter(),
            adahmc.adapters.OnlineVarianceMetricAdapter(),
        ]

    @pytest.fixture(params=({}, {"shrink_to_fit": True}))
    def stager(self, request):
        return adahmc.stagers.WindowedWarmUpStager(**request.param)

    @pytest.fixture(params=(151, 500, 1000, 1003))
    def n_warm_up_iter(self, request):
        return request.param

    def test_default_window_sizes(self, stager):
        assert stager.slow_window_sizes(1000) == [25, 50, 100, 200, 500]

    def test_default_window_boundaries(self, stager):
        assert stager.window_boundaries(1000) == [100, 150, 250, 450, 950]

    def test_windows_cover_slow_stage(self, stager, n_warm_up_iter):
        windows = stager.slow_window_sizes(n_warm_up_iter)
        assert sum(windows) == n_warm_up_iter - 75 - 50
        assert all(n_iter > 0 for n_iter in windows)

    def test_fast_stages_only_fast_adapters(self, stager, n_warm_up_iter, adapters):
        stages = stager.stages(n_warm_up_iter, None, adapters)
        assert stages["Initial fast adaptive"].n_iter == 75
        assert stages["Final fast adaptive"].n_iter == 50
        for label in ("Initial fast adaptive", "Final fast adaptive"):
            assert all(adapter.is_fast for adapter in stages[label].adapters)
        slow_labels = [label for label in stages if label.startswith("Slow")]
        assert len(slow_labels) == len(stager.slow_window_sizes(n_warm_up_iter))
        for label in slow_labels:
            assert stages[label].adapters == adapters


def test_windowed_stager_shrinks_default_buffers(caplog):
    stager = adahmc.stagers.WindowedWarmUpStager(shrink_to_fit=True)
    with caplog.at_level(logging.WARNING, logger="adahmc.stagers"):
        stages = stager.stages(100, None, [])
    assert [stage.n_iter for stage in stages.values()] == [15, 75, 10, None]
    assert any("too few" in record.message for record in caplog.records)


def test_windowed_stager_buffers_too_long_raises():
    stager = adahmc.stagers.WindowedWarmUpStager()
    with pytest.raises(adahmc.errors.ConfigurationError):
        stager.stages(100, None, [])


def test_windowed_stager_short_slow_stage_single_window(caplog):
    stager = adahmc.stagers.WindowedWarmUpStager()
    with caplog.at_level(logging.WARNING, logger="adahmc.stagers"):
        windows = stager.slow_window_sizes(140)
    assert windows == [15]
    assert len(caplog.records) > 0


def test_windowed_stager_custom_multiplier():
    stager = adahmc.stagers.WindowedWarmUpStager(
        n_init_slow_window_iter=10,
        n_init_fast_stage_iter=10,
        n_final_fast_stage_iter=10,
        slow_window_multiplier=3,
    )
    assert stager.slow_window_sizes(150) == [10, 30, 90]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"slow_window_multiplier": 0.5},
        {"n_init_slow_window_iter": 0},
        {"n_init_fast_stage_iter": -1},
    ],
)
def test_windowed_stager_invalid_arguments_raise(kwargs):
    with pytest.raises(adahmc.errors.ConfigurationError):
        adahmc.stagers.WindowedWarmUpStager(**kwargs)
