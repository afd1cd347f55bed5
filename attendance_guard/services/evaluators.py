from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar, TypeVar

from attendance_guard.errors import ConfigShapeError
from attendance_guard.models import AttendanceTypeKind, ValidationMode
from attendance_guard.services.geometry import distance_m, ip_matches, point_in_polygon
from attendance_guard.services.qr_usage import QrUsageStore
from attendance_guard.services.rule_config import (
    CONFIG_MODELS,
    AttendanceConfig,
    GeoPolygonConfig,
    IpLocation,
    QrCodeConfig,
    Route,
    RouteWaypointConfig,
    WifiIpConfig,
    parse_attendance_config,
)

logger = logging.getLogger("attendance_guard.evaluators")

REASON_INVALID_CONFIGURATION = "invalid configuration"
REASON_LOCATION_REQUIRED = "location required"
REASON_NETWORK_REQUIRED = "network info required"
REASON_CODE_REQUIRED = "code required"
REASON_CODE_NOT_FOUND = "code not recognized"
REASON_CODE_EXPIRED = "expired"
REASON_CODE_ALREADY_USED = "already used"
REASON_USAGE_TRACKING_UNAVAILABLE = "usage tracking unavailable"


@dataclass(frozen=True, slots=True)
class Location:
    lat: float
    lng: float
    accuracy: float | None = None


@dataclass(frozen=True, slots=True)
class PunchContext:
    location: Location | None = None
    ip_address: str | None = None
    qr_code: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True, slots=True)
class EvaluationResult:
    passed: bool
    reason: str
    matched_rule_id: str | None = None
    # Set on passing one-time QR results; the caller consumes the code after deciding.
    consume_code_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "matched_rule_id": self.matched_rule_id,
            "reason": self.reason,
        }


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


_EntryT = TypeVar("_EntryT")


def _active(entries: Sequence[_EntryT]) -> list[_EntryT]:
    return [entry for entry in entries if getattr(entry, "is_active", True)]


class RuleEvaluator(ABC):
    """Evaluates one attendance type config against a punch. Never raises for bad input."""

    kind: ClassVar[AttendanceTypeKind]

    def evaluate(self, config: AttendanceConfig | Any, context: PunchContext) -> EvaluationResult:
        if not isinstance(config, CONFIG_MODELS[self.kind]):
            try:
                config = parse_attendance_config(self.kind, config)
            except ConfigShapeError as exc:
                logger.warning(
                    "attendance_config_invalid",
                    extra={"kind": self.kind.value, "detail": exc.detail},
                )
                return EvaluationResult(passed=False, reason=REASON_INVALID_CONFIGURATION)
        return self._evaluate(config, context)

    @abstractmethod
    def _evaluate(self, config: Any, context: PunchContext) -> EvaluationResult:
        raise NotImplementedError


class GeoPolygonEvaluator(RuleEvaluator):
    kind = AttendanceTypeKind.GEO_POLYGON

    def _evaluate(self, config: GeoPolygonConfig, context: PunchContext) -> EvaluationResult:
        location = context.location
        if location is None:
            if config.allow_without_location:
                return EvaluationResult(passed=True, reason="attendance allowed without location")
            return EvaluationResult(passed=False, reason=REASON_LOCATION_REQUIRED)

        zones = _active(config.polygons)
        if not zones:
            return EvaluationResult(passed=False, reason="no polygons configured")

        if config.validation_mode == ValidationMode.ALL:
            for zone in zones:
                if not point_in_polygon(location, zone.coordinates):
                    return EvaluationResult(passed=False, reason=f"outside {zone.label}")
            return EvaluationResult(
                passed=True,
                reason="location verified within all zones",
                matched_rule_id=",".join(zone.id or "" for zone in zones),
            )

        for zone in zones:
            if point_in_polygon(location, zone.coordinates):
                return EvaluationResult(
                    passed=True,
                    reason=f"location verified within {zone.label}",
                    matched_rule_id=zone.id,
                )
        return EvaluationResult(passed=False, reason="outside allowed area")


class WifiIpEvaluator(RuleEvaluator):
    kind = AttendanceTypeKind.WIFI_IP

    def _evaluate(self, config: WifiIpConfig, context: PunchContext) -> EvaluationResult:
        ip = (context.ip_address or "").strip()
        if not ip:
            if config.allow_without_network:
                return EvaluationResult(passed=True, reason="attendance allowed without network info")
            return EvaluationResult(passed=False, reason=REASON_NETWORK_REQUIRED)

        locations = _active(config.ip_locations)
        if not locations:
            return EvaluationResult(passed=False, reason="no ip locations configured")

        def _matches(ip_location: IpLocation) -> bool:
            return any(ip_matches(ip, pattern) for pattern in ip_location.ip_addresses)

        if config.validation_mode == ValidationMode.ALL:
            missed = next((item for item in locations if not _matches(item)), None)
            if missed is None:
                return EvaluationResult(
                    passed=True,
                    reason="network verified for all locations",
                    matched_rule_id=",".join(item.id or "" for item in locations),
                )
            failure = f"network not allowed for {missed.label}"
        else:
            hit = next((item for item in locations if _matches(item)), None)
            if hit is not None:
                return EvaluationResult(
                    passed=True,
                    reason=f"network verified for {hit.label}",
                    matched_rule_id=hit.id,
                )
            failure = "network not allowed"

        if config.allow_without_network:
            return EvaluationResult(passed=True, reason="network not recognized, attendance allowed")
        return EvaluationResult(passed=False, reason=failure)


class RouteWaypointEvaluator(RuleEvaluator):
    kind = AttendanceTypeKind.ROUTE_WAYPOINT

    def _evaluate(self, config: RouteWaypointConfig, context: PunchContext) -> EvaluationResult:
        location = context.location
        if location is None:
            return EvaluationResult(passed=False, reason=REASON_LOCATION_REQUIRED)

        routes = _active(config.routes)
        if not routes:
            return EvaluationResult(passed=False, reason="no routes configured")

        # (route, nearest waypoint distance) for every route with a waypoint inside its tolerance
        within: list[tuple[Route, float]] = []
        for route in routes:
            distances = [
                distance_m(location.lat, location.lng, waypoint.lat, waypoint.lng)
                for waypoint in route.waypoints
            ]
            nearest = min(distances) if distances else None
            matched = nearest is not None and nearest <= config.tolerance_for(route)
            if matched:
                within.append((route, nearest))
            elif config.validation_mode == ValidationMode.ALL:
                return EvaluationResult(passed=False, reason=f"not near route {route.label}")

        if not within:
            return EvaluationResult(passed=False, reason="not near any route")

        if config.validation_mode == ValidationMode.ALL:
            return EvaluationResult(
                passed=True,
                reason="location verified near all routes",
                matched_rule_id=",".join(route.id or "" for route, _ in within),
            )

        closest_route, closest_distance = min(within, key=lambda item: item[1])
        return EvaluationResult(
            passed=True,
            reason=f"location verified near route {closest_route.label} ({round(closest_distance)} m)",
            matched_rule_id=closest_route.id,
        )


class QrCodeEvaluator(RuleEvaluator):
    kind = AttendanceTypeKind.QR_CODE

    def __init__(self, usage_store: QrUsageStore | None = None) -> None:
        self.usage_store = usage_store

    def _evaluate(self, config: QrCodeConfig, context: PunchContext) -> EvaluationResult:
        presented = (context.qr_code or "").strip()
        if not presented:
            return EvaluationResult(passed=False, reason=REASON_CODE_REQUIRED)

        entry = next((item for item in _active(config.qr_codes) if item.code == presented), None)
        if entry is None:
            return EvaluationResult(passed=False, reason=REASON_CODE_NOT_FOUND)

        if entry.created_at is not None:
            age = _as_utc(context.timestamp) - _as_utc(entry.created_at)
            if age > timedelta(hours=config.code_expiry_hours):
                return EvaluationResult(passed=False, reason=REASON_CODE_EXPIRED, matched_rule_id=entry.id)

        if config.one_time_use:
            if self.usage_store is None:
                return EvaluationResult(
                    passed=False,
                    reason=REASON_USAGE_TRACKING_UNAVAILABLE,
                    matched_rule_id=entry.id,
                )
            if self.usage_store.is_consumed(entry.id or ""):
                return EvaluationResult(passed=False, reason=REASON_CODE_ALREADY_USED, matched_rule_id=entry.id)

        if config.require_location and context.location is None:
            return EvaluationResult(passed=False, reason=REASON_LOCATION_REQUIRED, matched_rule_id=entry.id)

        return EvaluationResult(
            passed=True,
            reason=f"qr code {entry.label} validated successfully",
            matched_rule_id=entry.id,
            consume_code_id=entry.id if config.one_time_use else None,
        )


def build_evaluators(usage_store: QrUsageStore | None = None) -> dict[AttendanceTypeKind, RuleEvaluator]:
    return {
        AttendanceTypeKind.GEO_POLYGON: GeoPolygonEvaluator(),
        AttendanceTypeKind.WIFI_IP: WifiIpEvaluator(),
        AttendanceTypeKind.ROUTE_WAYPOINT: RouteWaypointEvaluator(),
        AttendanceTypeKind.QR_CODE: QrCodeEvaluator(usage_store),
    }
