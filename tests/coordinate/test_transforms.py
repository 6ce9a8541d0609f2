import unittest
import numpy as np
from spoofguard.coordinate.transforms import (
    ecef2llh, llh2ecef, ecef2enu, enu2ecef, enu_rotation_matrix, satazel
)
from spoofguard.core.constants import RE_WGS84, FE_WGS84


class TestCoordinateTransforms(unittest.TestCase):

    def setUp(self):
        self.tokyo_llh = np.array([np.radians(35.6762), np.radians(139.6503), 40.0])
        self.newyork_llh = np.array([np.radians(40.7128), np.radians(-74.0060), 10.0])
        self.equator_llh = np.array([0.0, 0.0, 0.0])

    def test_llh2ecef_ecef2llh_round_trip(self):
        test_points = [
            self.tokyo_llh,
            self.newyork_llh,
            self.equator_llh,
            np.array([np.radians(-35.0), np.radians(150.0), 100.0]),
            np.array([np.radians(60.0), np.radians(10.0), 3000.0]),
        ]

        for llh in test_points:
            llh_recovered = ecef2llh(llh2ecef(llh))
            np.testing.assert_allclose(llh_recovered[:2], llh[:2], atol=1e-10,
                                       err_msg=f"Round-trip failed for lat/lon {llh}")
            np.testing.assert_allclose(llh_recovered[2], llh[2], atol=1e-4,
                                       err_msg=f"Round-trip failed for height {llh}")

    def test_llh2ecef_known_values(self):
        xyz = llh2ecef(np.array([0.0, 0.0, 0.0]))
        np.testing.assert_allclose(xyz, [RE_WGS84, 0.0, 0.0], atol=1e-6)

        # 90 deg east, 100 m up
        xyz = llh2ecef(np.array([0.0, np.pi / 2, 100.0]))
        np.testing.assert_allclose(xyz, [0.0, RE_WGS84 + 100.0, 0.0], atol=1e-6)

        # Polar radius
        xyz = llh2ecef(np.array([np.pi / 2, 0.0, 0.0]))
        self.assertAlmostEqual(xyz[2], RE_WGS84 * (1 - FE_WGS84), places=3)

    def test_rotation_matrix_orthonormal(self):
        R = enu_rotation_matrix(self.tokyo_llh[0], self.tokyo_llh[1])
        np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-12)
        self.assertAlmostEqual(np.linalg.det(R), 1.0, places=12)

    def test_enu_of_origin_is_zero(self):
        xyz = llh2ecef(self.tokyo_llh)
        np.testing.assert_allclose(ecef2enu(xyz, self.tokyo_llh), np.zeros(3), atol=1e-6)

    def test_enu_axes(self):
        # At the equator/prime meridian east is +Y, north is +Z, up is +X
        origin = self.equator_llh
        base = llh2ecef(origin)
        np.testing.assert_allclose(ecef2enu(base + [0, 10, 0], origin), [10, 0, 0], atol=1e-9)
        np.testing.assert_allclose(ecef2enu(base + [0, 0, 10], origin), [0, 10, 0], atol=1e-9)
        np.testing.assert_allclose(ecef2enu(base + [10, 0, 0], origin), [0, 0, 10], atol=1e-9)

    def test_enu_ecef_round_trip(self):
        enu = np.array([123.4, -56.7, 8.9])
        xyz = enu2ecef(enu, self.newyork_llh)
        np.testing.assert_allclose(ecef2enu(xyz, self.newyork_llh), enu, atol=1e-6)

    def test_up_displacement_raises_height(self):
        xyz = enu2ecef(np.array([0.0, 0.0, 50.0]), self.tokyo_llh)
        llh = ecef2llh(xyz)
        self.assertAlmostEqual(llh[2], self.tokyo_llh[2] + 50.0, places=4)

    def test_satazel(self):
        R = enu_rotation_matrix(self.tokyo_llh[0], self.tokyo_llh[1])

        # Zenith
        az, el = satazel(self.tokyo_llh, R.T @ np.array([0.0, 0.0, 1.0]))
        self.assertAlmostEqual(el, np.pi / 2, places=10)

        # East on the horizon
        az, el = satazel(self.tokyo_llh, R.T @ np.array([1.0, 0.0, 0.0]))
        self.assertAlmostEqual(az, np.pi / 2, places=10)
        self.assertAlmostEqual(el, 0.0, places=10)

        # North-west at 30 deg
        los_enu = np.array([-np.sin(np.pi / 4) * np.cos(np.pi / 6),
                            np.cos(np.pi / 4) * np.cos(np.pi / 6),
                            np.sin(np.pi / 6)])
        az, el = satazel(self.tokyo_llh, R.T @ los_enu)
        self.assertAlmostEqual(az, 7 * np.pi / 4, places=10)
        self.assertAlmostEqual(el, np.pi / 6, places=10)


if __name__ == '__main__':
    unittest.main()
