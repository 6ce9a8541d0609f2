import threading
import unittest
from dataclasses import replace

import numpy as np

from spoofguard.config import FusionConfig, PositioningConfig, SolverConfig
from spoofguard.context import PositioningContext
from spoofguard.core.constants import CLIGHT, MAX_PRN
from spoofguard.core.data_structures import ImuSample, RawMeasurementBatch
from spoofguard.core.errors import ErrorKind
from spoofguard.examples.synthetic import SyntheticScenario
from spoofguard.gnss.geometry import geometry_matrix
from spoofguard.pipeline import PositioningEngine

NO_ATMOSPHERE = {'solver': {'atmospheric_corrections': False}}


class TestPositioningEngine(unittest.TestCase):

    def setUp(self):
        self.scenario = SyntheticScenario(receiver_velocity_enu=(1.5, -0.5, 0.2))
        self.engine = PositioningEngine(self.scenario.provider(),
                                        PositioningConfig.from_dict(NO_ATMOSPHERE))

    def _set_reference_to_truth(self, engine=None):
        lat, lon, h = self.scenario.receiver_llh
        (engine or self.engine).set_reference_position(int(round(np.degrees(lat) * 1e7)),
                                                       int(round(np.degrees(lon) * 1e7)),
                                                       int(round(h * 1e7)))

    def test_clean_epochs(self):
        for i in range(3):
            result = self.engine.process_batch(self.scenario.raw_batch(i))
            self.assertTrue(result.is_ok, result.message)
            sol = result.value
            np.testing.assert_allclose(sol.receiver_state.position_ecef,
                                       self.scenario.receiver_ecef, atol=1e-3)
            self.assertEqual(sol.used_prns, tuple(self.scenario.prns))
            self.assertEqual(sol.spoofed_prns, ())

        self.assertEqual(self.engine.context.completed_epochs, 3)
        sol = self.engine.last_solution
        self.assertTrue(sol.is_valid)
        self.assertAlmostEqual(sol.latitude_deg, 35.681, places=7)
        self.assertAlmostEqual(sol.longitude_deg, 139.767, places=7)
        self.assertAlmostEqual(sol.altitude_m, 40.0, places=3)
        np.testing.assert_allclose(sol.velocity_enu_mps, [1.5, -0.5, 0.2], atol=1e-6)
        self.assertEqual(sol.pseudorange_residuals_m.shape, (MAX_PRN,))
        self.assertEqual(np.count_nonzero(np.isfinite(sol.pseudorange_residuals_m)), 8)
        # No reference set
        self.assertTrue(np.all(np.isnan(sol.reference_residuals_m)))

    def test_insufficient_satellites_leaves_context(self):
        self.engine.process_batch(self.scenario.raw_batch(0)).unwrap()
        before = self.engine.context.receiver_state.as_vector()

        result = self.engine.process_batch(self.scenario.raw_batch(1, prns=[2, 5, 9]))
        self.assertIs(result.error, ErrorKind.INSUFFICIENT_SATELLITES)
        self.assertTrue(result.error.is_skippable)
        self.assertEqual(self.engine.context.completed_epochs, 1)
        np.testing.assert_array_equal(self.engine.context.receiver_state.as_vector(), before)
        self.assertFalse(self.engine.last_solution.is_valid)

    def test_time_base_failure(self):
        batch = self.scenario.raw_batch(0)
        bad = replace(batch.measurements[3],
                      received_sv_time_nanos=self.scenario.tow_ns - 302_500 * 10**9)
        batch = RawMeasurementBatch(batch.clock, batch.measurements[:3] + (bad,) +
                                    batch.measurements[4:])
        with self.assertLogs('spoofguard.pipeline', level='WARNING'):
            result = self.engine.process_batch(batch)
        self.assertIs(result.error, ErrorKind.TIME_BASE)
        self.assertEqual(self.engine.context.completed_epochs, 0)

    def test_week_boundary(self):
        scenario = SyntheticScenario(tow_s=0.0)
        engine = PositioningEngine(scenario.provider(), PositioningConfig.from_dict(NO_ATMOSPHERE))
        batch = scenario.raw_batch(0)
        # Transmit times still in the previous week
        wrapped = RawMeasurementBatch(batch.clock, tuple(
            replace(m, received_sv_time_nanos=m.received_sv_time_nanos + 604800 * 10**9)
            for m in batch.measurements))
        sol = engine.process_batch(wrapped).unwrap()
        np.testing.assert_allclose(sol.receiver_state.position_ecef, scenario.receiver_ecef,
                                   atol=1e-3)

    def test_spoofed_satellite_excluded_after_warm_up(self):
        self._set_reference_to_truth()
        self.engine.set_anti_spoof_enabled(True)
        for i in range(10):
            sol = self.engine.process_batch(self.scenario.raw_batch(i)).unwrap()
            self.assertEqual(sol.spoofed_prns, ())
            self.assertTrue(np.all(np.abs(sol.reference_residuals_m[~np.isnan(
                sol.reference_residuals_m)]) < 1.0))

        result = self.engine.process_batch(self.scenario.raw_batch(10, {13: 500.0}))
        sol = result.unwrap()
        self.assertEqual(sol.spoofed_prns, (13,))
        self.assertNotIn(13, sol.used_prns)
        self.assertAlmostEqual(sol.reference_residuals_m[12], 500.0, delta=1.0)
        np.testing.assert_allclose(sol.receiver_state.position_ecef, self.scenario.receiver_ecef,
                                   atol=1e-3)

        # Exclusion is per epoch
        sol = self.engine.process_batch(self.scenario.raw_batch(11)).unwrap()
        self.assertIn(13, sol.used_prns)

    def test_no_exclusion_when_disabled(self):
        self._set_reference_to_truth()
        for i in range(10):
            self.engine.process_batch(self.scenario.raw_batch(i)).unwrap()
        sol = self.engine.process_batch(self.scenario.raw_batch(10, {13: 500.0})).unwrap()
        self.assertEqual(sol.spoofed_prns, ())
        self.assertAlmostEqual(sol.reference_residuals_m[12], 500.0, delta=1.0)

    def test_reference_satellite_lost_after_warm_up(self):
        self._set_reference_to_truth()
        self.engine.set_anti_spoof_enabled(True)
        for i in range(10):
            self.engine.process_batch(self.scenario.raw_batch(i)).unwrap()

        # PRN 2 carries the latest transmit time; losing it shifts every pseudorange
        others = [prn for prn in self.scenario.prns if prn != 2]
        for i in range(10, 15):
            result = self.engine.process_batch(self.scenario.raw_batch(i, prns=others))
            self.assertTrue(result.is_ok, result.message)
            self.assertEqual(result.value.spoofed_prns, ())
            np.testing.assert_allclose(result.value.receiver_state.position_ecef,
                                       self.scenario.receiver_ecef, atol=1e-3)
        self.assertEqual(self.engine.context.completed_epochs, 15)

        sol = self.engine.process_batch(self.scenario.raw_batch(15, {13: 500.0},
                                                                prns=others)).unwrap()
        self.assertEqual(sol.spoofed_prns, (13,))

    def test_spoofed_fix_differs_from_filtered_fix(self):
        # A loose residual gate lets the solver keep the spoofed satellite
        config = {'solver': {'atmospheric_corrections': False, 'outlier_threshold_m': 1000.0}}
        offset_m = 1668e-9 * CLIGHT
        fixes = {}
        for enabled in (True, False):
            engine = PositioningEngine(self.scenario.provider(),
                                       PositioningConfig.from_dict(config))
            self._set_reference_to_truth(engine)
            engine.set_anti_spoof_enabled(enabled)
            for i in range(10):
                engine.process_batch(self.scenario.raw_batch(i)).unwrap()
            sol = engine.process_batch(self.scenario.raw_batch(10, {13: offset_m})).unwrap()
            self.assertEqual(13 in sol.used_prns, not enabled)
            fixes[enabled] = sol.receiver_state.position_ecef

        np.testing.assert_allclose(fixes[True], self.scenario.receiver_ecef, atol=1e-3)

        # Least squares shift caused by the offset on PRN 13 alone
        prns = self.scenario.prns
        G = geometry_matrix(np.array([self.scenario.satellite_positions[prn] for prn in prns]),
                            self.scenario.receiver_ecef)
        offsets = np.array([offset_m if prn == 13 else 0.0 for prn in prns])
        shift = np.linalg.lstsq(G, offsets, rcond=None)[0][:3]
        self.assertGreater(np.linalg.norm(shift), 5.0)
        np.testing.assert_allclose(fixes[False] - fixes[True], shift, atol=0.05)

    def test_zero_rate_uncertainty_discarded(self):
        batch = self.scenario.raw_batch(0, overrides={30: {'pseudorange_rate_uncertainty_mps': 0.0}})
        result = self.engine.process_batch(batch)
        self.assertTrue(result.is_ok, result.message)
        self.assertNotIn(30, result.value.used_prns)
        self.assertEqual(len(result.value.used_prns), 7)

    def test_missing_ephemeris(self):
        provider = self.scenario.provider()
        provider.remove_satellite(26)
        engine = PositioningEngine(provider, PositioningConfig.from_dict(NO_ATMOSPHERE))
        sol = engine.process_batch(self.scenario.raw_batch(0)).unwrap()
        self.assertNotIn(26, sol.used_prns)
        self.assertEqual(len(sol.used_prns), 7)

    def test_discard_first_epoch(self):
        config = PositioningConfig.from_dict(dict(NO_ATMOSPHERE, discard_first_epoch=True))
        engine = PositioningEngine(self.scenario.provider(), config)
        first = engine.process_batch(self.scenario.raw_batch(0))
        self.assertTrue(first.is_ok)
        self.assertFalse(first.value.is_valid)
        self.assertEqual(engine.context.completed_epochs, 0)
        second = engine.process_batch(self.scenario.raw_batch(1)).unwrap()
        self.assertTrue(second.is_valid)

    def test_geoid_latched_on_first_fix(self):
        engine = PositioningEngine(self.scenario.provider(), elevation_lookup=lambda lat, lon: 20.0)
        first = engine.process_batch(self.scenario.raw_batch(0)).unwrap()
        geoid = engine.context.geoid_height_m
        self.assertAlmostEqual(geoid, first.altitude_m - 20.0, places=6)

        engine.process_batch(self.scenario.raw_batch(1)).unwrap()
        self.assertEqual(engine.context.geoid_height_m, geoid)

    def test_fusion_anchor_and_update(self):
        self.engine.process_batch(self.scenario.raw_batch(0)).unwrap()
        ctx = self.engine.context
        np.testing.assert_allclose(ctx.enu_anchor_ecef, self.scenario.receiver_ecef, atol=1e-3)
        np.testing.assert_array_equal(self.engine.fused_state().as_vector(), np.zeros(6))

        self.engine.process_batch(self.scenario.raw_batch(1)).unwrap()
        fused = self.engine.fused_state()
        # P' = I + Q on the first filter run
        k_pos, k_vel = 101.0 / 101.1, 1.5 / 1.6
        np.testing.assert_allclose(fused.velocity_enu_mps, k_vel * np.array([1.5, -0.5, 0.2]),
                                   atol=1e-6)
        np.testing.assert_allclose(fused.position_enu_m, np.zeros(3), atol=1e-3 * k_pos)
        self.assertEqual(fused.covariance.shape, (6, 6))

    def test_anchor_at_reference(self):
        config = PositioningConfig(solver=SolverConfig(atmospheric_corrections=False),
                                   fusion=FusionConfig(anchor_at_reference=True))
        engine = PositioningEngine(self.scenario.provider(), config)
        engine.set_reference_position(356000000, 1397000000, 0)
        engine.process_batch(self.scenario.raw_batch(0)).unwrap()
        np.testing.assert_allclose(engine.context.enu_anchor_ecef, engine.context.reference.ecef)

    def test_imu_samples(self):
        engine = PositioningEngine(self.scenario.provider(),
                                   PositioningConfig.from_dict(dict(
                                       NO_ATMOSPHERE, dead_reckoning={'settling_samples': 0})))
        engine.on_imu_sample(ImuSample(0.0, acceleration_enu=np.array([0.0, 1.0, 0.0])))
        self.assertTrue(engine.on_imu_sample(ImuSample(1.0, acceleration_enu=np.array([0.0, 1.0, 0.0]))))
        np.testing.assert_allclose(engine.fused_state().velocity_enu_mps, [0.0, 1.0, 0.0])

    def test_shared_context(self):
        ctx = PositioningContext(PositioningConfig.from_dict(NO_ATMOSPHERE))
        first = PositioningEngine(self.scenario.provider(), context=ctx)
        second = PositioningEngine(self.scenario.provider(), context=ctx)
        first.process_batch(self.scenario.raw_batch(0)).unwrap()
        second.process_batch(self.scenario.raw_batch(1)).unwrap()
        self.assertEqual(ctx.completed_epochs, 2)
        self.assertIs(first.config, second.config)

    def test_independent_engines_in_threads(self):
        engines = [PositioningEngine(self.scenario.provider(),
                                     PositioningConfig.from_dict(NO_ATMOSPHERE)) for _ in range(2)]
        errors = []

        def run(engine):
            for i in range(5):
                result = engine.process_batch(self.scenario.raw_batch(i))
                if not result.is_ok:
                    errors.append(result.message)
                engine.on_imu_sample(ImuSample(float(i), acceleration_enu=np.zeros(3)))

        threads = [threading.Thread(target=run, args=(engine,)) for engine in engines]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        for engine in engines:
            self.assertEqual(engine.context.completed_epochs, 5)


if __name__ == '__main__':
    unittest.main()
