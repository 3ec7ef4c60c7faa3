import pytest

from power import (IBM_X3550_XEON_X5675, PowerModelCubic, PowerModelLinear,
                   PowerModelSpecPower, SPEC_POWER_TABLES)


def test_linear_model():
    model = PowerModelLinear(100, 250)
    assert model.get_power(0) == 100
    assert model.get_power(1) == 250
    assert model.get_power(0.5) == pytest.approx(175)


def test_cubic_model():
    model = PowerModelCubic(100, 200)
    assert model.get_power(0.5) == pytest.approx(112.5)
    assert model.get_power(1) == 200


@pytest.mark.parametrize("utilization", [-0.1, 1.01])
def test_out_of_range_utilization_is_rejected(utilization):
    with pytest.raises(ValueError):
        PowerModelLinear(100, 250).get_power(utilization)
    with pytest.raises(ValueError):
        PowerModelSpecPower(IBM_X3550_XEON_X5675).get_power(utilization)


def test_spec_power_interpolates_between_levels():
    model = PowerModelSpecPower(SPEC_POWER_TABLES["IbmX3550XeonX5675"])
    assert model.get_power(0) == pytest.approx(58.4)
    assert model.get_power(0.02) == pytest.approx(58.4 + (98 - 58.4) / 5)
    assert model.get_power(1) == pytest.approx(222)
    assert model.power_idle == 58.4
    assert model.power_max == 222
