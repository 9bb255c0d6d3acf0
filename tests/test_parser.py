from __future__ import annotations

import unittest
from datetime import datetime

from rheinpegel import parser
from rheinpegel.parser import (
    DateFormatError,
    MissingFieldError,
    NumberFormatError,
    ParseError,
    Reading,
    TimeFormatError,
)

SAMPLE_XML = """<?xml version="1.0" encoding="UTF-8"?>
<Root>
  <Datum> 27. Oktober 2025 </Datum>
  <Uhrzeit>15:25</Uhrzeit>
  <Pegel>3,68</Pegel>
  <Grafik>https://www.stadt-koeln.de/pegel.png</Grafik>
</Root>
"""

FIXED_NOW = 1_700_000_000.0


class ConvertGermanDecimalTests(unittest.TestCase):
    def test_metres_become_centimetres(self) -> None:
        self.assertEqual(parser.convert_german_decimal("3,68"), 368)
        self.assertEqual(parser.convert_german_decimal("0,00"), 0)
        self.assertEqual(parser.convert_german_decimal(" 10,05 "), 1005)

    def test_out_of_range_is_returned_not_rejected(self) -> None:
        with self.assertLogs("rheinpegel.parser", level="WARNING"):
            self.assertEqual(parser.convert_german_decimal("21,00"), 2100)
        with self.assertLogs("rheinpegel.parser", level="WARNING"):
            self.assertEqual(parser.convert_german_decimal("-0,50"), -50)

    def test_rejects_non_german_formats(self) -> None:
        for text in ("3.68", "3,6", "3,685", "abc", "", "3,68 m"):
            with self.subTest(text=text):
                with self.assertRaises(NumberFormatError):
                    parser.convert_german_decimal(text)


class ParseGermanDatetimeTests(unittest.TestCase):
    def test_local_time_epoch_ms(self) -> None:
        ts, approx = parser.parse_german_datetime("27. Oktober 2025", "15:25")
        self.assertFalse(approx)
        self.assertEqual(ts, int(datetime(2025, 10, 27, 15, 25).timestamp() * 1000))

    def test_maerz_spellings(self) -> None:
        expected = int(datetime(2024, 3, 3, 7, 5).timestamp() * 1000)
        self.assertEqual(parser.parse_german_datetime("3. März 2024", "7:05")[0], expected)
        self.assertEqual(parser.parse_german_datetime("3. Maerz 2024", "07:05")[0], expected)

    def test_malformed_date_and_time(self) -> None:
        with self.assertRaises(DateFormatError):
            parser.parse_german_datetime("Oktober 2025", "15:25")
        with self.assertRaises(DateFormatError):
            parser.parse_german_datetime("27. Octobre 2025", "15:25")
        with self.assertRaises(TimeFormatError):
            parser.parse_german_datetime("27. Oktober 2025", "1525")

    def test_impossible_moment_is_flagged_approximate(self) -> None:
        with self.assertLogs("rheinpegel.parser", level="WARNING"):
            ts, approx = parser.parse_german_datetime(
                "31. Februar 2025", "10:00", clock=lambda: FIXED_NOW
            )
        self.assertTrue(approx)
        self.assertEqual(ts, int(FIXED_NOW * 1000))


class ParseTests(unittest.TestCase):
    def test_parse_full_payload(self) -> None:
        reading = parser.parse(SAMPLE_XML)
        self.assertEqual(reading.water_level_cm, 368)
        self.assertEqual(reading.date, "27. Oktober 2025")
        self.assertEqual(reading.time, "15:25")
        self.assertEqual(reading.graphic, "https://www.stadt-koeln.de/pegel.png")
        self.assertFalse(reading.approximate_timestamp)
        self.assertFalse(reading.out_of_range)
        self.assertEqual(
            reading.timestamp_ms,
            int(datetime(2025, 10, 27, 15, 25).timestamp() * 1000),
        )

    def test_grafik_is_optional(self) -> None:
        xml = "<Root><Datum>1. Mai 2025</Datum><Uhrzeit>08:00</Uhrzeit><Pegel>2,10</Pegel></Root>"
        reading = parser.parse(xml)
        self.assertIsNone(reading.graphic)
        self.assertEqual(reading.water_level_cm, 210)

    def test_fields_are_found_at_any_depth(self) -> None:
        xml = (
            "<H><Messung><Datum>1. Mai 2025</Datum><Uhrzeit>08:00</Uhrzeit></Messung>"
            "<Wert><Pegel>4,00</Pegel></Wert></H>"
        )
        self.assertEqual(parser.parse(xml).water_level_cm, 400)

    def test_missing_fields_are_listed(self) -> None:
        xml = "<Root><Datum>27. Oktober 2025</Datum><Pegel>  </Pegel></Root>"
        with self.assertRaises(MissingFieldError) as ctx:
            parser.parse(xml)
        self.assertEqual(ctx.exception.missing, ["Uhrzeit", "Pegel"])
        self.assertIn("Missing required fields in XML response", str(ctx.exception))

    def test_malformed_xml(self) -> None:
        with self.assertRaises(ParseError) as ctx:
            parser.parse("<Root><Datum>")
        self.assertIn("XML parsing error", str(ctx.exception))

    def test_bad_level_propagates_as_parse_error(self) -> None:
        xml = "<Root><Datum>1. Mai 2025</Datum><Uhrzeit>08:00</Uhrzeit><Pegel>n/a</Pegel></Root>"
        with self.assertRaises(ParseError):
            parser.parse(xml)


class ReadingTests(unittest.TestCase):
    def test_stored_form_round_trip(self) -> None:
        reading = Reading(412, "1. Mai 2025", "08:00", 1_746_079_200_000, None, True)
        self.assertEqual(Reading.from_dict(reading.to_dict()), reading)

    def test_from_dict_rejects_bad_entries(self) -> None:
        with self.assertRaises(KeyError):
            Reading.from_dict({"water_level_cm": 100})
        with self.assertRaises(TypeError):
            Reading.from_dict({"water_level_cm": "100", "timestamp_ms": 1})

    def test_out_of_range_flag(self) -> None:
        self.assertTrue(Reading(2100, "", "", 0).out_of_range)
        self.assertTrue(Reading(-1, "", "", 0).out_of_range)
        self.assertFalse(Reading(2000, "", "", 0).out_of_range)


if __name__ == "__main__":
    unittest.main()
