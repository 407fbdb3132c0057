#!/usr/bin/env python3
"""
Tests for key literal formatting and key predicates.
"""

import unittest
from datetime import datetime, timezone
from decimal import Decimal

from odata_mcp_bridge import EntityProperty, EntityType, InvalidArgumentError
from odata_mcp_bridge.key_formatter import build_key_predicate, format_key_literal, parse_key_literal


class TestFormatKeyLiteral(unittest.TestCase):

    def test_string_is_quoted_and_escaped(self):
        self.assertEqual(format_key_literal("ABC", "Edm.String"), "'ABC'")
        self.assertEqual(format_key_literal("O'Neil", "Edm.String"), "'O''Neil'")
        self.assertEqual(format_key_literal(42, "Edm.String"), "'42'")

    def test_integers_are_bare(self):
        self.assertEqual(format_key_literal(42, "Edm.Int32"), "42")
        self.assertEqual(format_key_literal("17", "Edm.Int64"), "17")
        self.assertEqual(format_key_literal(3.0, "Edm.Int16"), "3")
        self.assertEqual(format_key_literal(Decimal("8"), "Edm.Byte"), "8")

    def test_integer_validation(self):
        invalid = [
            (True, "Edm.Int32"),
            ("abc", "Edm.Int32"),
            (1.5, "Edm.Int32"),
            (70000, "Edm.Int16"),
            (256, "Edm.Byte"),
            (-129, "Edm.SByte"),
        ]
        for value, edm_type in invalid:
            with self.subTest(value=value, edm_type=edm_type):
                with self.assertRaises(InvalidArgumentError) as ctx:
                    format_key_literal(value, edm_type, field="ID")
                self.assertEqual(ctx.exception.field, "ID")

    def test_numbers(self):
        self.assertEqual(format_key_literal(Decimal("12.50"), "Edm.Decimal"), "12.50")
        self.assertEqual(format_key_literal(1.5, "Edm.Double"), "1.5")
        self.assertEqual(format_key_literal("0.25", "Edm.Single"), "0.25")
        with self.assertRaises(InvalidArgumentError):
            format_key_literal("NaN", "Edm.Decimal")

    def test_boolean(self):
        self.assertEqual(format_key_literal(True, "Edm.Boolean"), "true")
        self.assertEqual(format_key_literal("FALSE", "Edm.Boolean"), "false")
        with self.assertRaises(InvalidArgumentError):
            format_key_literal(1, "Edm.Boolean")

    def test_guid_legacy_and_modern(self):
        value = "0F8FAD5B-D9CB-469F-A165-70867728950E"
        self.assertEqual(format_key_literal(value, "Edm.Guid"), "guid'0f8fad5b-d9cb-469f-a165-70867728950e'")
        self.assertEqual(format_key_literal(value, "Edm.Guid", modern=True), "0f8fad5b-d9cb-469f-a165-70867728950e")
        with self.assertRaises(InvalidArgumentError):
            format_key_literal("not-a-guid", "Edm.Guid")

    def test_datetime_legacy_and_modern(self):
        self.assertEqual(format_key_literal("2024-01-15T10:30:00Z", "Edm.DateTime"),
                         "datetime'2024-01-15T10:30:00'")
        self.assertEqual(format_key_literal(datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc),
                                            "Edm.DateTimeOffset", modern=True),
                         "2024-01-15T10:30:00Z")
        self.assertEqual(format_key_literal("2024-01-15", "Edm.Date"), "2024-01-15")
        with self.assertRaises(InvalidArgumentError):
            format_key_literal("yesterday", "Edm.DateTime")

    def test_time_legacy_and_modern(self):
        self.assertEqual(format_key_literal("13:45:30", "Edm.Time"), "time'PT13H45M30S'")
        self.assertEqual(format_key_literal("PT13H45M30S", "Edm.TimeOfDay", modern=True), "13:45:30")

    def test_binary_legacy_and_modern(self):
        self.assertEqual(format_key_literal(b"\xde\xad\xbe\xef", "Edm.Binary"), "binary'DEADBEEF'")
        self.assertEqual(format_key_literal("deadbeef", "Edm.Binary", modern=True), "binary'3q2-7w'")

    def test_missing_value(self):
        with self.assertRaises(InvalidArgumentError) as ctx:
            format_key_literal(None, "Edm.Int32", field="ID")
        self.assertEqual(ctx.exception.field, "ID")

    def test_unknown_type_falls_back_to_string(self):
        with self.assertLogs("odata_mcp_bridge.key_formatter", level="WARNING"):
            self.assertEqual(format_key_literal("x", "Vendor.Custom"), "'x'")


class TestLiteralRoundTrip(unittest.TestCase):
    """format(parse(literal)) gives back the literal for every primitive kind."""

    LEGACY = [
        ("'ABC'", "Edm.String"),
        ("'O''Neil'", "Edm.String"),
        ("''", "Edm.String"),
        ("42", "Edm.Int32"),
        ("-7", "Edm.Int16"),
        ("255", "Edm.Byte"),
        ("-128", "Edm.SByte"),
        ("9223372036854775807", "Edm.Int64"),
        ("12.50", "Edm.Decimal"),
        ("0.5", "Edm.Double"),
        ("true", "Edm.Boolean"),
        ("false", "Edm.Boolean"),
        ("guid'0f8fad5b-d9cb-469f-a165-70867728950e'", "Edm.Guid"),
        ("datetime'2024-01-15T10:30:00'", "Edm.DateTime"),
        ("datetime'2024-01-15T10:30:00.123'", "Edm.DateTime"),
        ("2024-01-15", "Edm.Date"),
        ("time'PT13H45M30S'", "Edm.Time"),
        ("binary'DEADBEEF'", "Edm.Binary"),
    ]

    MODERN = [
        ("0f8fad5b-d9cb-469f-a165-70867728950e", "Edm.Guid"),
        ("2024-01-15T10:30:00Z", "Edm.DateTimeOffset"),
        ("2024-01-15T10:30:00+02:00", "Edm.DateTimeOffset"),
        ("13:45:30", "Edm.TimeOfDay"),
        ("binary'3q2-7w'", "Edm.Binary"),
        ("'ABC'", "Edm.String"),
        ("42", "Edm.Int64"),
    ]

    def test_legacy_round_trip(self):
        for literal, edm_type in self.LEGACY:
            with self.subTest(literal=literal, edm_type=edm_type):
                self.assertEqual(format_key_literal(parse_key_literal(literal, edm_type), edm_type), literal)

    def test_modern_round_trip(self):
        for literal, edm_type in self.MODERN:
            with self.subTest(literal=literal, edm_type=edm_type):
                value = parse_key_literal(literal, edm_type, modern=True)
                self.assertEqual(format_key_literal(value, edm_type, modern=True), literal)

    def test_parse_rejects_malformed_literals(self):
        for literal, edm_type in [("ABC", "Edm.String"), ("maybe", "Edm.Boolean"), ("'x'", "Edm.Guid")]:
            with self.subTest(literal=literal):
                with self.assertRaises(ValueError):
                    parse_key_literal(literal, edm_type)


class TestBuildKeyPredicate(unittest.TestCase):

    def setUp(self):
        self.product = EntityType(
            name="Product",
            properties=[
                EntityProperty(name="ID", type="Edm.Int32", nullable=False, is_key=True),
                EntityProperty(name="Name", type="Edm.String"),
            ],
            key_properties=["ID"],
        )
        self.order_item = EntityType(
            name="OrderItem",
            properties=[
                EntityProperty(name="ItemNo", type="Edm.Int16", nullable=False, is_key=True),
                EntityProperty(name="OrderID", type="Edm.String", nullable=False, is_key=True),
            ],
            key_properties=["OrderID", "ItemNo"],
        )

    def test_single_key(self):
        self.assertEqual(build_key_predicate(self.product, {"ID": 42}), "(42)")

    def test_composite_key_in_declaration_order(self):
        self.assertEqual(build_key_predicate(self.order_item, {"ItemNo": 2, "OrderID": "A1"}),
                         "(OrderID='A1',ItemNo=2)")

    def test_missing_key(self):
        with self.assertRaises(InvalidArgumentError) as ctx:
            build_key_predicate(self.order_item, {"OrderID": "A1"})
        self.assertIn("Missing required key parameters: ItemNo", ctx.exception.message)
        self.assertEqual(ctx.exception.field, "ItemNo")

    def test_entity_type_without_keys(self):
        keyless = EntityType(name="Log", properties=[EntityProperty(name="Text")])
        with self.assertRaises(InvalidArgumentError):
            build_key_predicate(keyless, {})


if __name__ == "__main__":
    unittest.main()
