import os
import sys
import tempfile

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from tradecore.data.csv_data import CSVDataLoader

import unittest


class TestCSVDataLoader(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def _write(self, symbol: str, text: str) -> None:
        with open(os.path.join(self.tmp.name, f"{symbol}.csv"), "w", encoding="utf-8") as fh:
            fh.write(text)

    def test_standard_layout_with_iso_times(self) -> None:
        self._write(
            "EURUSD",
            "time,open,high,low,close,volume\n"
            "2024-01-01 01:00,1.1,1.2,1.0,1.15,10\n"
            "2024-01-01 00:00,1.0,1.1,0.9,1.05,5\n"
            "2024-01-01 00:00,9.0,9.0,9.0,9.0,9\n",
        )
        candles = CSVDataLoader(self.tmp.name, "UTC").load_candles("EURUSD")

        self.assertEqual([c.time for c in candles], [1_704_067_200_000, 1_704_070_800_000])
        self.assertEqual(candles[0].close, 1.05)
        self.assertEqual(candles[1].volume, 10.0)

    def test_epoch_milliseconds_and_window(self) -> None:
        self._write(
            "BTCUSDT",
            "time,open,high,low,close\n"
            "1704067200000,100,110,90,105\n"
            "1704070800000,105,112,101,110\n"
            "1704074400000,110,115,108,111\n",
        )
        loader = CSVDataLoader(self.tmp.name, "UTC")
        candles = loader.load_candles("BTCUSDT", start_ms=1_704_070_800_000, end_ms=1_704_074_400_000)

        self.assertEqual(len(candles), 2)
        self.assertEqual(candles[0].open, 105.0)
        self.assertEqual(candles[0].volume, 0.0)

    def test_naive_times_are_localised(self) -> None:
        self._write("GER40", "time,open,high,low,close\n2024-01-01 01:00,1,1,1,1\n")
        candles = CSVDataLoader(self.tmp.name, "Europe/Berlin").load_candles("GER40")
        self.assertEqual(candles[0].time, 1_704_067_200_000)

    def test_mt5_layout(self) -> None:
        self._write(
            "XAUUSD",
            "<DATE>\t<TIME>\t<OPEN>\t<HIGH>\t<LOW>\t<CLOSE>\t<TICKVOL>\n"
            "2024.01.01\t00:00:00\t2060.0\t2065.0\t2058.0\t2063.0\t120\n"
            "2024.01.01\t01:00:00\t2063.0\t2070.0\t2061.0\t2069.0\t95\n",
        )
        candles = CSVDataLoader(self.tmp.name, "UTC").load_candles("XAUUSD")

        self.assertEqual(len(candles), 2)
        self.assertEqual(candles[1].time, 1_704_070_800_000)
        self.assertEqual(candles[1].high, 2070.0)
        self.assertEqual(candles[0].volume, 120.0)

    def test_missing_file_and_columns(self) -> None:
        loader = CSVDataLoader(self.tmp.name, "UTC")
        with self.assertRaises(FileNotFoundError):
            loader.load("NOPE")
        self._write("BAD", "time,open,close\n2024-01-01,1,1\n")
        with self.assertRaises(ValueError):
            loader.load("BAD")


if __name__ == '__main__':
    unittest.main()
