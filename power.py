# power.py
from scipy.interpolate import interp1d


class PowerModelLinear:
    def __init__(self, power_idle, power_max):
        """
        :param power_idle: Watts drawn by a powered-on host with no load
        :param power_max: Watts drawn at full load
        """
        self.power_idle = power_idle
        self.power_max = power_max

    def get_power(self, utilization):
        if utilization < 0 or utilization > 1:
            raise ValueError("Utilization value must be between 0 and 1")
        return self.power_idle + (self.power_max - self.power_idle) * utilization


class PowerModelCubic(PowerModelLinear):
    def get_power(self, utilization):
        if utilization < 0 or utilization > 1:
            raise ValueError("Utilization value must be between 0 and 1")
        return self.power_idle + (self.power_max - self.power_idle) * utilization ** 3


class PowerModelSpecPower:
    """Interpolates a SPECpower table measured at 0%, 10%, ..., 100% load."""

    def __init__(self, table):
        self.table = list(table)
        levels = [i / (len(self.table) - 1) for i in range(len(self.table))]
        self._curve = interp1d(levels, self.table)

    @property
    def power_idle(self):
        return self.table[0]

    @property
    def power_max(self):
        return self.table[-1]

    def get_power(self, utilization):
        if utilization < 0 or utilization > 1:
            raise ValueError("Utilization value must be between 0 and 1")
        return float(self._curve(utilization))


# SPECpower_ssj2008 results, Watts at 0%..100% load
HP_PROLIANT_ML110_G3 = [105, 112, 118, 125, 131, 137, 147, 153, 157, 164, 169]
HP_PROLIANT_ML110_G5 = [93.7, 97, 101, 105, 110, 116, 121, 125, 129, 133, 135]
IBM_X3550_XEON_X5675 = [58.4, 98, 109, 118, 128, 140, 153, 170, 189, 205, 222]

SPEC_POWER_TABLES = {
    "HpProLiantMl110G3PentiumD930": HP_PROLIANT_ML110_G3,
    "HpProLiantMl110G5Xeon3075": HP_PROLIANT_ML110_G5,
    "IbmX3550XeonX5675": IBM_X3550_XEON_X5675,
}
