import pytest

from detectors import (IqrDetector, LocalRegressionDetector, MadDetector,
                       RobustLocalRegressionDetector, StaticThresholdDetector, make_detector)
from errors import ConfigurationError


@pytest.fixture
def loaded_host(make_host, make_vm):
    def _make(requested_mips, history=()):
        """Host of 1000 MIPS with one VM requesting ``requested_mips``."""
        host = make_host(pe_mips=1000)
        vm = make_vm(mips=1000)
        host.vm_create(vm)
        vm.being_instantiated = False
        vm.current_requested_mips = lambda: [requested_mips]
        for value in history:
            vm.utilization_history.add(value)
        return host
    return _make


def test_static_threshold_boundary(loaded_host):
    detector = StaticThresholdDetector(0.8)
    assert not detector.is_host_overutilized(loaded_host(800))
    assert detector.is_host_overutilized(loaded_host(801))


@pytest.mark.parametrize("threshold", [0, 1, 1.5, -0.2])
def test_static_threshold_must_be_a_fraction(threshold):
    with pytest.raises(ConfigurationError):
        StaticThresholdDetector(threshold)


@pytest.mark.parametrize("requested", [700, 900])
def test_mad_uses_fallback_with_short_history(loaded_host, requested):
    host = loaded_host(requested, history=[0.5, 0.6] * 5)
    static = StaticThresholdDetector(0.8)
    mad = MadDetector(StaticThresholdDetector(0.8))
    assert mad.is_host_overutilized(host) == static.is_host_overutilized(host)


def test_mad_threshold_from_history(loaded_host):
    # MAD of alternating 0.5/0.6 is 0.05, so the threshold is 1 - 1.2 * 0.05
    history = [0.5, 0.6] * 6
    detector = MadDetector(StaticThresholdDetector(0.8), safety_parameter=1.2)
    assert detector.host_utilization_threshold(loaded_host(0, history)) == pytest.approx(0.94)
    assert detector.is_host_overutilized(loaded_host(950, history))
    assert not detector.is_host_overutilized(loaded_host(930, history))


def test_iqr_threshold_from_history(loaded_host):
    history = [0.1 * (i % 4 + 1) for i in range(12)]
    detector = IqrDetector(StaticThresholdDetector(0.8), safety_parameter=1.0)
    threshold = detector.host_utilization_threshold(loaded_host(0, history))
    assert threshold == pytest.approx(0.7)


def test_negative_safety_parameter_is_rejected():
    with pytest.raises(ConfigurationError):
        MadDetector(StaticThresholdDetector(0.8), safety_parameter=-1)
    with pytest.raises(ConfigurationError):
        LocalRegressionDetector(StaticThresholdDetector(0.8), safety_parameter=-0.5)


def test_statistical_detector_needs_fallback():
    with pytest.raises(ConfigurationError):
        MadDetector(None)


def test_fallback_cycle_is_rejected():
    static = StaticThresholdDetector(0.8)
    mad = MadDetector(static)
    iqr = IqrDetector(mad)
    with pytest.raises(ConfigurationError):
        static.set_fallback(iqr)
    assert static.fallback is None


def test_clock_reaches_the_whole_chain():
    static = StaticThresholdDetector(0.8)
    detector = IqrDetector(MadDetector(static))
    detector.set_clock(lambda: 42.0)
    assert static.clock() == 42.0


def test_local_regression_predicts_overload(loaded_host):
    rising = [0.45 + 0.05 * x for x in range(1, 11)]
    host = loaded_host(500, history=rising)
    detector = LocalRegressionDetector(StaticThresholdDetector(0.8), scheduling_interval=300,
                                       safety_parameter=1.2)
    assert detector.is_host_overutilized(host)
    assert RobustLocalRegressionDetector(StaticThresholdDetector(0.8)).is_host_overutilized(host)


def test_local_regression_flat_history(loaded_host):
    host = loaded_host(900, history=[0.3] * 10)
    detector = LocalRegressionDetector(StaticThresholdDetector(0.8))
    assert not detector.is_host_overutilized(host)


def test_local_regression_short_history_uses_fallback(loaded_host):
    host = loaded_host(900, history=[0.3] * 5)
    assert LocalRegressionDetector(StaticThresholdDetector(0.8)).is_host_overutilized(host)


def test_detector_records_policy_history(loaded_host):
    detector = StaticThresholdDetector(0.8)
    detector.set_clock(lambda: 300.0)
    host = loaded_host(500)
    detector.is_host_overutilized(host)
    assert detector.history.metric_history[host.host_id] == [0.8]
    assert detector.history.time_history[host.host_id] == [300.0]


def test_make_detector():
    assert isinstance(make_detector("mad").fallback, StaticThresholdDetector)
    assert isinstance(make_detector("lrr"), RobustLocalRegressionDetector)
    with pytest.raises(ConfigurationError):
        make_detector("thr")
