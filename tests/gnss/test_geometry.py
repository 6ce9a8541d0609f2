"""Tests for the least squares geometry kernel and DOP."""

import numpy as np

from spoofguard.coordinate.transforms import enu_rotation_matrix
from spoofguard.examples.synthetic import SyntheticScenario
from spoofguard.gnss.geometry import dilution_of_precision, geometry_matrix


def _scenario_geometry():
    scenario = SyntheticScenario()
    sats = np.array([scenario.satellite_positions[prn] for prn in scenario.prns])
    return scenario, sats


def test_geometry_matrix_rows():
    scenario, sats = _scenario_geometry()
    G = geometry_matrix(sats, scenario.receiver_ecef)

    assert G.shape == (len(sats), 4)
    np.testing.assert_allclose(np.linalg.norm(G[:, :3], axis=1), 1.0, atol=1e-12)
    np.testing.assert_array_equal(G[:, 3], 1.0)

    # Rows point from the satellite towards the receiver
    expected = (scenario.receiver_ecef - sats[0]) / np.linalg.norm(scenario.receiver_ecef - sats[0])
    np.testing.assert_allclose(G[0, :3], expected, atol=1e-12)


def test_dop_ordering_and_rotation():
    scenario, sats = _scenario_geometry()
    G = geometry_matrix(sats, scenario.receiver_ecef)
    R = enu_rotation_matrix(scenario.receiver_llh[0], scenario.receiver_llh[1])

    gdop, pdop, hdop, vdop, tdop = dilution_of_precision(G, R)
    assert hdop < pdop < gdop
    np.testing.assert_allclose(pdop ** 2, hdop ** 2 + vdop ** 2, rtol=1e-12)
    np.testing.assert_allclose(gdop ** 2, pdop ** 2 + tdop ** 2, rtol=1e-12)

    # PDOP and GDOP do not depend on the frame
    ecef_dop = dilution_of_precision(G)
    np.testing.assert_allclose(ecef_dop[0], gdop, rtol=1e-10)
    np.testing.assert_allclose(ecef_dop[1], pdop, rtol=1e-10)


def test_dop_singular_geometry():
    scenario, sats = _scenario_geometry()
    G = geometry_matrix(sats[:3], scenario.receiver_ecef)
    assert all(np.isinf(value) for value in dilution_of_precision(G))
