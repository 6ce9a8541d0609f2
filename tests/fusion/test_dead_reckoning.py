import unittest
import numpy as np
from spoofguard.config import DeadReckoningConfig
from spoofguard.core.data_structures import ImuSample
from spoofguard.fusion.dead_reckoning import DeadReckoning


def _accel(t, a=(1.0, 0.0, 0.0)):
    return ImuSample(t, acceleration_enu=np.array(a, dtype=float))


class TestDeadReckoning(unittest.TestCase):

    def test_settling_samples_skipped(self):
        dr = DeadReckoning()
        for i in range(200):
            self.assertFalse(dr.propagate(_accel(i * 0.01)))
        np.testing.assert_array_equal(dr.state_vector(), np.zeros(6))

        self.assertTrue(dr.propagate(_accel(2.0)))
        np.testing.assert_allclose(dr.velocity_enu, [0.01, 0.0, 0.0])
        np.testing.assert_allclose(dr.position_enu, [0.0001, 0.0, 0.0])

    def test_constant_acceleration(self):
        dr = DeadReckoning(DeadReckoningConfig(settling_samples=0))
        dt = 0.1
        for i in range(11):
            dr.propagate(_accel(i * dt, (0.0, 2.0, 0.0)))
        # Ten integration steps of 0.1 s
        np.testing.assert_allclose(dr.velocity_enu, [0.0, 2.0, 0.0], atol=1e-12)
        expected_north = sum(2.0 * dt * k * dt for k in range(1, 11))
        self.assertAlmostEqual(dr.position_enu[1], expected_north, places=12)

    def test_out_of_order_rejected(self):
        dr = DeadReckoning(DeadReckoningConfig(settling_samples=0))
        dr.propagate(_accel(1.0))
        with self.assertRaises(ValueError):
            dr.propagate(_accel(0.5))

    def test_delta_velocity_samples(self):
        dr = DeadReckoning()
        sample = ImuSample(0.5, delta_velocity_enu=np.array([0.0, 0.0, 0.2]), delta_time_s=0.5)
        self.assertTrue(dr.propagate(sample))
        np.testing.assert_allclose(dr.velocity_enu, [0.0, 0.0, 0.2])
        np.testing.assert_allclose(dr.position_enu, [0.0, 0.0, 0.1])

    def test_overwrite_and_reset(self):
        dr = DeadReckoning()
        dr.overwrite(np.arange(6, dtype=float))
        np.testing.assert_array_equal(dr.state_vector(), np.arange(6))
        dr.reset()
        np.testing.assert_array_equal(dr.state_vector(), np.zeros(6))
        self.assertFalse(dr.settled)


if __name__ == '__main__':
    unittest.main()
