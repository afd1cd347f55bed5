from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from attendance_guard.services.evaluators import (
    GeoPolygonEvaluator,
    Location,
    PunchContext,
    QrCodeEvaluator,
    RouteWaypointEvaluator,
    WifiIpEvaluator,
)
from attendance_guard.services.qr_usage import InMemoryQrUsageStore

NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

ZONE_A = {
    "id": "polygon_a",
    "name": "Zone A",
    "coordinates": [
        {"lat": 0.0, "lng": 0.0},
        {"lat": 0.0, "lng": 2.0},
        {"lat": 2.0, "lng": 2.0},
        {"lat": 2.0, "lng": 0.0},
    ],
}
ZONE_B = {
    "id": "polygon_b",
    "name": "Zone B",
    "coordinates": [
        {"lat": 1.0, "lng": 1.0},
        {"lat": 1.0, "lng": 3.0},
        {"lat": 3.0, "lng": 3.0},
        {"lat": 3.0, "lng": 1.0},
    ],
}

WAYPOINT = {"lat": 23.8103, "lng": 90.4125, "name": "Start"}
# Roughly 111.195 km per degree of latitude.
NEAR_100M = Location(lat=23.8103 + 0.0009, lng=90.4125)
FAR_300M = Location(lat=23.8103 + 0.0027, lng=90.4125)


def _context(**kwargs) -> PunchContext:  # type: ignore[no-untyped-def]
    kwargs.setdefault("timestamp", NOW)
    return PunchContext(**kwargs)


class GeoPolygonEvaluatorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.evaluator = GeoPolygonEvaluator()

    def test_any_mode_passes_inside_one_zone(self) -> None:
        config = {"polygons": [ZONE_A, ZONE_B], "validation_mode": "any"}
        result = self.evaluator.evaluate(config, _context(location=Location(0.5, 0.5)))
        self.assertTrue(result.passed)
        self.assertEqual(result.matched_rule_id, "polygon_a")
        self.assertIn("Zone A", result.reason)

    def test_all_mode_requires_every_zone(self) -> None:
        config = {"polygons": [ZONE_A, ZONE_B], "validation_mode": "all"}

        only_a = self.evaluator.evaluate(config, _context(location=Location(0.5, 0.5)))
        self.assertFalse(only_a.passed)
        self.assertEqual(only_a.reason, "outside Zone B")

        overlap = self.evaluator.evaluate(config, _context(location=Location(1.5, 1.5)))
        self.assertTrue(overlap.passed)
        self.assertEqual(overlap.matched_rule_id, "polygon_a,polygon_b")

    def test_outside_every_zone_fails(self) -> None:
        config = {"polygons": [ZONE_A], "validation_mode": "any"}
        result = self.evaluator.evaluate(config, _context(location=Location(5.0, 5.0)))
        self.assertFalse(result.passed)
        self.assertIsNone(result.matched_rule_id)

    def test_missing_location_respects_allow_flag(self) -> None:
        denied = self.evaluator.evaluate({"polygons": [ZONE_A]}, _context())
        self.assertFalse(denied.passed)
        self.assertEqual(denied.reason, "location required")

        allowed = self.evaluator.evaluate({"polygons": [ZONE_A], "allow_without_location": True}, _context())
        self.assertTrue(allowed.passed)
        self.assertIn("without location", allowed.reason)

    def test_inactive_zones_are_ignored(self) -> None:
        config = {"polygons": [{**ZONE_A, "is_active": False}, ZONE_B]}
        result = self.evaluator.evaluate(config, _context(location=Location(0.5, 0.5)))
        self.assertFalse(result.passed)

    def test_no_active_zone_never_passes_in_all_mode(self) -> None:
        config = {"polygons": [{**ZONE_A, "is_active": False}], "validation_mode": "all"}
        result = self.evaluator.evaluate(config, _context(location=Location(0.5, 0.5)))
        self.assertFalse(result.passed)
        self.assertEqual(result.reason, "no polygons configured")

    def test_malformed_config_fails_closed(self) -> None:
        result = self.evaluator.evaluate({}, _context(location=Location(0.5, 0.5)))
        self.assertFalse(result.passed)
        self.assertEqual(result.reason, "invalid configuration")


class WifiIpEvaluatorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.evaluator = WifiIpEvaluator()
        self.config = {
            "ip_locations": [{"ip_addresses": ["10.0.0.0/8"]}],
            "validation_mode": "any",
            "allow_without_network": False,
        }

    def test_address_inside_range_passes(self) -> None:
        result = self.evaluator.evaluate(self.config, _context(ip_address="10.5.5.5"))
        self.assertTrue(result.passed)
        self.assertEqual(result.matched_rule_id, "office_1")

    def test_missing_address_requires_network_info(self) -> None:
        result = self.evaluator.evaluate(self.config, _context(ip_address=None))
        self.assertFalse(result.passed)
        self.assertEqual(result.reason, "network info required")

    def test_missing_address_allowed_when_configured(self) -> None:
        result = self.evaluator.evaluate({**self.config, "allow_without_network": True}, _context())
        self.assertTrue(result.passed)

    def test_unknown_address_fails(self) -> None:
        result = self.evaluator.evaluate(self.config, _context(ip_address="192.168.1.9"))
        self.assertFalse(result.passed)
        self.assertEqual(result.reason, "network not allowed")

    def test_unknown_address_falls_back_when_allowed(self) -> None:
        config = {**self.config, "allow_without_network": True}
        result = self.evaluator.evaluate(config, _context(ip_address="203.0.113.50"))
        self.assertTrue(result.passed)
        self.assertIsNone(result.matched_rule_id)
        self.assertIn("attendance allowed", result.reason)

    def test_all_mode_requires_each_location(self) -> None:
        config = {
            "ip_locations": [
                {"id": "campus", "name": "Campus", "ip_addresses": ["10.0.0.0/8"]},
                {"id": "lab", "name": "Lab", "ip_addresses": ["10.1.0.0/16", "10.2.0.1"]},
            ],
            "validation_mode": "all",
        }
        inside_both = self.evaluator.evaluate(config, _context(ip_address="10.1.4.4"))
        self.assertTrue(inside_both.passed)
        self.assertEqual(inside_both.matched_rule_id, "campus,lab")

        campus_only = self.evaluator.evaluate(config, _context(ip_address="10.9.4.4"))
        self.assertFalse(campus_only.passed)
        self.assertEqual(campus_only.reason, "network not allowed for Lab")


class RouteWaypointEvaluatorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.evaluator = RouteWaypointEvaluator()
        self.config = {
            "routes": [{"id": "route_1", "name": "Route A", "waypoints": [WAYPOINT], "tolerance": 150}],
            "validation_mode": "any",
        }

    def test_point_within_tolerance_passes(self) -> None:
        result = self.evaluator.evaluate(self.config, _context(location=NEAR_100M))
        self.assertTrue(result.passed)
        self.assertEqual(result.matched_rule_id, "route_1")

    def test_point_beyond_tolerance_fails(self) -> None:
        result = self.evaluator.evaluate(self.config, _context(location=FAR_300M))
        self.assertFalse(result.passed)
        self.assertEqual(result.reason, "not near any route")

    def test_missing_location_always_fails(self) -> None:
        result = self.evaluator.evaluate(self.config, _context())
        self.assertFalse(result.passed)
        self.assertEqual(result.reason, "location required")

    def test_any_waypoint_of_a_route_is_enough(self) -> None:
        config = {
            "routes": [
                {
                    "id": "route_1",
                    "waypoints": [{"lat": 24.5, "lng": 91.0}, WAYPOINT],
                    "tolerance": 150,
                }
            ]
        }
        self.assertTrue(self.evaluator.evaluate(config, _context(location=NEAR_100M)).passed)

    def test_any_mode_reports_closest_matching_route(self) -> None:
        config = {
            "routes": [
                {"id": "wide", "waypoints": [{"lat": 23.8103 + 0.002, "lng": 90.4125}], "tolerance": 500},
                {"id": "tight", "waypoints": [WAYPOINT], "tolerance": 150},
            ]
        }
        result = self.evaluator.evaluate(config, _context(location=NEAR_100M))
        self.assertEqual(result.matched_rule_id, "tight")

    def test_all_mode_requires_every_route(self) -> None:
        config = {
            "routes": [
                {"id": "route_1", "name": "Route A", "waypoints": [WAYPOINT]},
                {"id": "route_2", "name": "Route B", "waypoints": [{"lat": 24.0, "lng": 91.0}]},
            ],
            "validation_mode": "all",
            "tolerance": 150,
        }
        result = self.evaluator.evaluate(config, _context(location=NEAR_100M))
        self.assertFalse(result.passed)
        self.assertEqual(result.reason, "not near route Route B")


class QrCodeEvaluatorTests(unittest.TestCase):
    def _config(self, *, hours_ago: float, **overrides):  # type: ignore[no-untyped-def]
        config = {
            "qr_codes": [
                {
                    "id": "qr_1",
                    "name": "Reception QR",
                    "code": "AERO-0011223344556677",
                    "created_at": (NOW - timedelta(hours=hours_ago)).isoformat(),
                }
            ],
            "code_expiry_hours": 24,
            "one_time_use": False,
            "require_location": False,
        }
        config.update(overrides)
        return config

    def test_code_within_expiry_passes(self) -> None:
        result = QrCodeEvaluator().evaluate(
            self._config(hours_ago=23),
            _context(qr_code="AERO-0011223344556677"),
        )
        self.assertTrue(result.passed)
        self.assertEqual(result.matched_rule_id, "qr_1")
        self.assertIsNone(result.consume_code_id)

    def test_code_past_expiry_fails(self) -> None:
        result = QrCodeEvaluator().evaluate(
            self._config(hours_ago=25),
            _context(qr_code="AERO-0011223344556677"),
        )
        self.assertFalse(result.passed)
        self.assertEqual(result.reason, "expired")

    def test_missing_and_unknown_codes_fail(self) -> None:
        evaluator = QrCodeEvaluator()
        missing = evaluator.evaluate(self._config(hours_ago=1), _context(qr_code="  "))
        self.assertEqual(missing.reason, "code required")
        unknown = evaluator.evaluate(self._config(hours_ago=1), _context(qr_code="AERO-FFFF"))
        self.assertFalse(unknown.passed)
        self.assertEqual(unknown.reason, "code not recognized")

    def test_inactive_code_is_not_recognized(self) -> None:
        config = self._config(hours_ago=1)
        config["qr_codes"][0]["is_active"] = False
        result = QrCodeEvaluator().evaluate(config, _context(qr_code="AERO-0011223344556677"))
        self.assertEqual(result.reason, "code not recognized")

    def test_code_without_created_at_does_not_expire(self) -> None:
        config = self._config(hours_ago=0)
        del config["qr_codes"][0]["created_at"]
        result = QrCodeEvaluator().evaluate(config, _context(qr_code="AERO-0011223344556677"))
        self.assertTrue(result.passed)

    def test_require_location_only_checks_presence(self) -> None:
        config = self._config(hours_ago=1, require_location=True)
        evaluator = QrCodeEvaluator()
        without = evaluator.evaluate(config, _context(qr_code="AERO-0011223344556677"))
        self.assertFalse(without.passed)
        self.assertEqual(without.reason, "location required")
        with_location = evaluator.evaluate(
            config,
            _context(qr_code="AERO-0011223344556677", location=Location(0.0, 0.0)),
        )
        self.assertTrue(with_location.passed)

    def test_one_time_code_marks_consumption_and_rejects_reuse(self) -> None:
        store = InMemoryQrUsageStore()
        evaluator = QrCodeEvaluator(store)
        config = self._config(hours_ago=1, one_time_use=True)

        first = evaluator.evaluate(config, _context(qr_code="AERO-0011223344556677"))
        self.assertTrue(first.passed)
        self.assertEqual(first.consume_code_id, "qr_1")

        self.assertTrue(store.try_consume("qr_1"))
        second = evaluator.evaluate(config, _context(qr_code="AERO-0011223344556677"))
        self.assertFalse(second.passed)
        self.assertEqual(second.reason, "already used")

    def test_one_time_code_without_store_fails_closed(self) -> None:
        config = self._config(hours_ago=1, one_time_use=True)
        result = QrCodeEvaluator().evaluate(config, _context(qr_code="AERO-0011223344556677"))
        self.assertFalse(result.passed)


if __name__ == "__main__":
    unittest.main()
