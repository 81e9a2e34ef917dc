import hashlib
import hmac
import unittest
from unittest.mock import MagicMock, patch
from urllib.parse import urlencode

import requests

from data.binance_rest import BinanceRestClient, CredentialsMissingError


def response(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


def kline_row(open_time, high, low):
    return [open_time, "1.0", str(high), str(low), "1.5", "100", open_time + 86_399_999, "0", 0, "0", "0", "0"]


class TestBinanceRestClient(unittest.TestCase):
    def setUp(self):
        self.session = MagicMock()
        self.client = BinanceRestClient(
            api_key="key", secret_key="secret", base_url="https://example.test", session=self.session
        )

    def test_public_request_sends_api_key_header(self):
        self.session.get.return_value = response({"symbols": []})
        self.client.get_exchange_info()
        args, kwargs = self.session.get.call_args
        self.assertEqual(args[0], "https://example.test/fapi/v1/exchangeInfo")
        self.assertEqual(kwargs["headers"], {"X-MBX-APIKEY": "key"})
        self.assertNotIn("signature", kwargs["params"])

    @patch("data.binance_rest.time.time", return_value=1700000000.5)
    def test_signed_request(self, _time):
        self.session.get.return_value = response({"assets": []})
        self.client.get_account_info()

        params = self.session.get.call_args[1]["params"]
        self.assertEqual(params["timestamp"], 1700000000500)
        expected = hmac.new(b"secret", urlencode({"timestamp": 1700000000500}).encode(), hashlib.sha256).hexdigest()
        self.assertEqual(params["signature"], expected)

    def test_signed_request_without_credentials(self):
        client = BinanceRestClient(api_key="", secret_key="", session=self.session)
        with self.assertRaises(CredentialsMissingError):
            client.get_account_info()
        self.session.get.assert_not_called()

    def test_http_errors_propagate_from_endpoints(self):
        self.session.get.side_effect = requests.ConnectionError("down")
        with self.assertRaises(requests.RequestException):
            self.client.get_klines("BTCUSDT", "1d")

    def test_get_symbols_filters_universe(self):
        self.session.get.return_value = response({"symbols": [
            {"symbol": "BTCUSDT", "status": "TRADING", "contractType": "PERPETUAL", "quoteAsset": "USDT"},
            {"symbol": "ETHUSDT", "status": "TRADING", "contractType": "PERPETUAL", "quoteAsset": "USDT"},
            {"symbol": "BTCUSDT_240329", "status": "TRADING", "contractType": "CURRENT_QUARTER", "quoteAsset": "USDT"},
            {"symbol": "BTCUSDC", "status": "TRADING", "contractType": "PERPETUAL", "quoteAsset": "USDC"},
            {"symbol": "LUNAUSDT", "status": "SETTLING", "contractType": "PERPETUAL", "quoteAsset": "USDT"},
        ]})
        self.assertEqual(self.client.get_symbols(), ["BTCUSDT", "ETHUSDT"])
        self.assertEqual(self.client.get_symbols(limit=1), ["BTCUSDT"])

    def test_get_symbols_degrades_to_empty(self):
        self.session.get.side_effect = requests.Timeout("slow")
        self.assertEqual(self.client.get_symbols(), [])

    def test_historical_ranges(self):
        self.session.get.return_value = response([
            kline_row(0, 2.0, 1.0),
            kline_row(86_400_000, 5.0, 2.0),
            [1, "bad"],
        ])
        ranges = self.client.get_historical_ranges("BTCUSDT", days=3)
        self.assertEqual(ranges, [1.0, 3.0])
        params = self.session.get.call_args[1]["params"]
        self.assertEqual(params, {"symbol": "BTCUSDT", "interval": "1d", "limit": 3})

    def test_historical_ranges_empty_on_error(self):
        self.session.get.side_effect = requests.ConnectionError("down")
        self.assertEqual(self.client.get_historical_ranges("BTCUSDT"), [])

    def test_market_snapshots(self):
        self.session.get.return_value = response([
            {"symbol": "BTCUSDT", "lastPrice": "100", "priceChangePercent": "1", "volume": "5",
             "highPrice": "110", "lowPrice": "90", "openPrice": "99"},
            {"symbol": "ETHUSDT", "lastPrice": "bad", "priceChangePercent": "1", "volume": "5",
             "highPrice": "110", "lowPrice": "90", "openPrice": "99"},
            {"symbol": "SOLUSDT", "lastPrice": "20", "priceChangePercent": "1", "volume": "5",
             "highPrice": "21", "lowPrice": "19", "openPrice": "20"},
        ])
        snaps = self.client.get_market_snapshots()
        self.assertEqual([s.symbol for s in snaps], ["BTCUSDT", "SOLUSDT"])

        only_sol = self.client.get_market_snapshots(["SOLUSDT"])
        self.assertEqual([s.symbol for s in only_sol], ["SOLUSDT"])


if __name__ == '__main__':
    unittest.main()
