import unittest
import numpy as np
from spoofguard.coordinate.transforms import enu_rotation_matrix, llh2ecef
from spoofguard.core.constants import CLIGHT
from spoofguard.gnss.atmosphere import (
    AtmosphericCorrector, egnos_zenith_delays, ionosphere_delay_ecef,
    ionosphere_klobuchar, troposphere_egnos, unb_abc_mapping
)


class TestKlobuchar(unittest.TestCase):

    def setUp(self):
        self.alpha = [1e-8, 0.0, 0.0, 0.0]
        self.beta = [90000.0, 0.0, 0.0, 0.0]

    def test_night_floor(self):
        delay = ionosphere_klobuchar(0.0, 0.0, 0.0, np.pi / 2, 0.0, self.alpha, self.beta)
        slant = 1.0 + 16.0 * (0.53 - 0.5) ** 3
        self.assertAlmostEqual(delay, CLIGHT * slant * 5e-9, places=6)

    def test_afternoon_peak(self):
        delay = ionosphere_klobuchar(0.0, 0.0, 0.0, np.pi / 2, 50400.0, self.alpha, self.beta)
        slant = 1.0 + 16.0 * (0.53 - 0.5) ** 3
        self.assertAlmostEqual(delay, CLIGHT * slant * 1.5e-8, places=4)

    def test_below_horizon(self):
        self.assertEqual(ionosphere_klobuchar(0.5, 0.5, 1.0, -0.1, 0.0, self.alpha, self.beta), 0.0)

    def test_low_elevation_larger(self):
        zenith = ionosphere_klobuchar(0.6, 2.4, 1.0, np.pi / 2, 20000.0, self.alpha, self.beta)
        low = ionosphere_klobuchar(0.6, 2.4, 1.0, np.radians(10.0), 20000.0, self.alpha, self.beta)
        self.assertGreater(low, 2.0 * zenith)

    def test_frequency_scaling(self):
        llh = np.array([np.radians(35.0), np.radians(139.0), 0.0])
        rx = llh2ecef(llh)
        R = enu_rotation_matrix(llh[0], llh[1])
        sat = rx + 2.2e7 * (R.T @ np.array([0.3, 0.4, np.sqrt(0.75)]))
        l1 = ionosphere_delay_ecef(rx, sat, 40000.0, self.alpha, self.beta)
        l5 = ionosphere_delay_ecef(rx, sat, 40000.0, self.alpha, self.beta, frequency_hz=1.17645e9)
        self.assertAlmostEqual(l5 / l1, (1.57542 / 1.17645) ** 2, places=9)


class TestEgnosTroposphere(unittest.TestCase):

    def test_zenith_delay_magnitude(self):
        zhd, zwd = egnos_zenith_delays(np.radians(45.0), 0.0, 180)
        self.assertTrue(2.2 < zhd < 2.4)
        self.assertTrue(0.0 < zwd < 0.4)

    def test_mapping_is_one_at_zenith(self):
        dry, wet = unb_abc_mapping(np.pi / 2, np.radians(45.0), 0.0)
        self.assertAlmostEqual(dry, 1.0, places=12)
        self.assertAlmostEqual(wet, 1.0, places=12)

    def test_elevation_dependence(self):
        lat = np.radians(35.0)
        delays = [troposphere_egnos(np.radians(el), lat, 0.0, 100) for el in (5.0, 15.0, 45.0, 90.0)]
        self.assertTrue(all(a > b for a, b in zip(delays, delays[1:])))
        self.assertTrue(20.0 < delays[0] < 35.0)

    def test_height_dependence(self):
        lat = np.radians(35.0)
        sea = troposphere_egnos(np.radians(30.0), lat, 0.0, 100)
        mountain = troposphere_egnos(np.radians(30.0), lat, 3000.0, 100)
        self.assertLess(mountain, 0.8 * sea)

    def test_latitude_clamped(self):
        # Table edges extend flat below 15 and above 75 degrees
        np.testing.assert_allclose(egnos_zenith_delays(np.radians(5.0), 0.0, 50),
                                   egnos_zenith_delays(np.radians(15.0), 0.0, 50), rtol=1e-12)
        np.testing.assert_allclose(egnos_zenith_delays(np.radians(80.0), 0.0, 50),
                                   egnos_zenith_delays(np.radians(75.0), 0.0, 50), rtol=1e-12)


class TestAtmosphericCorrector(unittest.TestCase):

    def setUp(self):
        self.llh = np.array([np.radians(35.0), np.radians(139.0), 140.0])
        self.rx = llh2ecef(self.llh)
        R = enu_rotation_matrix(self.llh[0], self.llh[1])
        self.sat = self.rx + 2.2e7 * (R.T @ np.array([0.0, np.cos(0.5), np.sin(0.5)]))

    def test_height_before_and_after_geoid(self):
        before = AtmosphericCorrector(100, 0.0, elevation_above_sea_level_m=100.0)
        after = AtmosphericCorrector(100, 0.0, geoid_height_m=40.0)
        self.assertEqual(before.height_above_sea_level(self.llh), 100.0)
        self.assertAlmostEqual(after.height_above_sea_level(self.llh), 100.0)
        self.assertAlmostEqual(before(self.rx, self.sat)[1], after(self.rx, self.sat)[1], places=6)

    def test_no_iono_without_parameters(self):
        iono, tropo = AtmosphericCorrector(100, 0.0)(self.rx, self.sat)
        self.assertEqual(iono, 0.0)
        self.assertAlmostEqual(tropo, troposphere_egnos(0.5, self.llh[0], 0.0, 100), places=3)

    def test_iono_with_parameters(self):
        corrector = AtmosphericCorrector(100, 50400.0, iono_parameters=([1e-8, 0, 0, 0],
                                                                        [90000.0, 0, 0, 0]))
        iono, _ = corrector(self.rx, self.sat)
        self.assertGreater(iono, 1.5)


if __name__ == '__main__':
    unittest.main()
