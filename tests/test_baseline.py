import unittest
from unittest.mock import MagicMock

from core.baseline import BaselineProvider


class TestBaselineProvider(unittest.TestCase):
    def setUp(self):
        self.provider = BaselineProvider()

    def test_fallback_without_history(self):
        self.assertEqual(self.provider.compute_adr("BTCUSDT", 250.0), 250.0 * 0.8)
        self.assertIsNone(self.provider.get_baseline("BTCUSDT"))

    def test_empty_history_uses_fallback(self):
        self.provider.set_history("BTCUSDT", [])
        self.assertEqual(self.provider.compute_adr("BTCUSDT", 10.0), 10.0 * 0.8)

    def test_all_zero_history_uses_fallback(self):
        self.provider.set_history("BTCUSDT", [0.0, 0.0, 0.0])
        self.assertEqual(self.provider.compute_adr("BTCUSDT", 10.0), 10.0 * 0.8)

    def test_zero_range_fallback_is_zero(self):
        self.assertEqual(self.provider.compute_adr("BTCUSDT", 0.0), 0.0)

    def test_mean_of_history(self):
        self.provider.set_history("ETHUSDT", [10.0, 20.0, 30.0])
        self.assertAlmostEqual(self.provider.compute_adr("ETHUSDT", 999.0), 20.0)

    def test_history_is_bounded_to_window(self):
        provider = BaselineProvider(window=3)
        provider.set_history("ETHUSDT", [100.0, 1.0, 2.0, 3.0])
        baseline = provider.get_baseline("ETHUSDT")
        # Oldest entries fall off, most recent last
        self.assertEqual(baseline.ranges, [1.0, 2.0, 3.0])
        self.assertAlmostEqual(baseline.adr, 2.0)

    def test_get_baseline_returns_copy(self):
        self.provider.set_history("ETHUSDT", [1.0, 2.0])
        baseline = self.provider.get_baseline("ETHUSDT")
        baseline.ranges.append(1000.0)
        self.assertEqual(self.provider.get_baseline("ETHUSDT").ranges, [1.0, 2.0])

    def test_refresh_loads_from_rest(self):
        rest = MagicMock()
        rest.get_historical_ranges.side_effect = lambda symbol, days: [5.0, 15.0] if symbol == "BTCUSDT" else []
        provider = BaselineProvider(rest_client=rest)

        loaded = provider.refresh(["BTCUSDT", "DOGEUSDT"], max_workers=2)

        self.assertEqual(loaded, 1)
        self.assertAlmostEqual(provider.compute_adr("BTCUSDT", 1.0), 10.0)
        self.assertEqual(provider.compute_adr("DOGEUSDT", 1.0), 0.8)

    def test_refresh_survives_fetch_errors(self):
        rest = MagicMock()
        rest.get_historical_ranges.side_effect = RuntimeError("boom")
        provider = BaselineProvider(rest_client=rest)
        self.assertEqual(provider.refresh(["BTCUSDT"]), 0)
        self.assertEqual(provider.compute_adr("BTCUSDT", 5.0), 4.0)

    def test_refresh_without_client(self):
        self.assertEqual(self.provider.refresh(["BTCUSDT"]), 0)


if __name__ == '__main__':
    unittest.main()
