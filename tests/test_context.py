import unittest
import numpy as np
from spoofguard.config import PositioningConfig, SpoofingConfig
from spoofguard.context import PositioningContext, reference_position_from_e7
from spoofguard.coordinate.transforms import llh2ecef
from spoofguard.core.data_structures import ReceiverState


class TestReferencePosition(unittest.TestCase):

    def test_from_e7(self):
        ref = reference_position_from_e7(356810000, 1397670000, 400000000)
        self.assertAlmostEqual(ref.latitude_deg, 35.681, places=9)
        self.assertAlmostEqual(ref.longitude_deg, 139.767, places=9)
        self.assertAlmostEqual(ref.altitude_m, 40.0, places=9)
        expected = llh2ecef(np.array([np.radians(35.681), np.radians(139.767), 40.0]))
        np.testing.assert_allclose(ref.ecef, expected, atol=1e-6)
        np.testing.assert_allclose(ref.llh, [np.radians(35.681), np.radians(139.767), 40.0])

    def test_negative_values(self):
        ref = reference_position_from_e7(-338688000, -700000000, -150000000)
        self.assertAlmostEqual(ref.latitude_deg, -33.8688, places=9)
        self.assertAlmostEqual(ref.longitude_deg, -70.0, places=9)
        self.assertAlmostEqual(ref.altitude_m, -15.0, places=9)

    def test_invalid_latitude(self):
        with self.assertRaises(ValueError):
            reference_position_from_e7(950000000, 0, 0)


class TestPositioningContext(unittest.TestCase):

    def setUp(self):
        self.ctx = PositioningContext()

    def test_initial_state(self):
        self.assertEqual(self.ctx.completed_epochs, 0)
        self.assertFalse(self.ctx.geoid_computed)
        self.assertIsNone(self.ctx.reference)
        self.assertFalse(self.ctx.anti_spoof_enabled)
        self.assertIsNone(self.ctx.enu_anchor_ecef)
        self.assertFalse(self.ctx.last_solution.is_valid)

    def test_anti_spoof_default_from_config(self):
        ctx = PositioningContext(PositioningConfig(spoofing=SpoofingConfig(enabled=True)))
        self.assertTrue(ctx.anti_spoof_enabled)

    def test_operator_commands(self):
        ref = self.ctx.set_reference_position(356810000, 1397670000, 400000000)
        self.assertIs(self.ctx.reference, ref)
        self.ctx.set_anti_spoof_enabled(True)
        self.assertTrue(self.ctx.anti_spoof_enabled)
        self.ctx.clear_reference_position()
        self.assertIsNone(self.ctx.reference)

    def test_commit_latches_geoid_once(self):
        state = ReceiverState(np.array([1.0, 2.0, 3.0]), 10.0)
        self.ctx.commit(state, 36.5)
        self.ctx.commit(state, 99.0)
        self.assertEqual(self.ctx.completed_epochs, 2)
        self.assertEqual(self.ctx.geoid_height_m, 36.5)
        self.assertTrue(self.ctx.geoid_computed)

        # Committed state is a copy
        state.position_ecef[0] = -1.0
        self.assertEqual(self.ctx.receiver_state.position_ecef[0], 1.0)

    def test_reset_keeps_operator_settings(self):
        self.ctx.set_reference_position(356810000, 1397670000, 400000000)
        self.ctx.set_anti_spoof_enabled(True)
        self.ctx.commit(ReceiverState(np.ones(3), 1.0), 30.0)
        self.ctx.reset()
        self.assertEqual(self.ctx.completed_epochs, 0)
        self.assertIsNone(self.ctx.geoid_height_m)
        self.assertIsNotNone(self.ctx.reference)
        self.assertTrue(self.ctx.anti_spoof_enabled)

    def test_latch_anchor_resets_fusion(self):
        self.ctx.dead_reckoning.overwrite(np.ones(6))
        self.ctx.latch_anchor(np.array([1.0, 2.0, 3.0]), np.array([0.1, 0.2, 3.0]))
        np.testing.assert_array_equal(self.ctx.dead_reckoning.state_vector(), np.zeros(6))
        np.testing.assert_array_equal(self.ctx.enu_anchor_ecef, [1.0, 2.0, 3.0])


if __name__ == '__main__':
    unittest.main()
