"""Typed attendance type configs.

Each attendance type kind has one config model. Raw JSON configs, including the older
single-zone shapes still present in some rows, are normalized and parsed once into these
models; anything that does not fit is rejected with ConfigShapeError.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from attendance_guard.errors import ConfigShapeError, UnknownAttendanceKindError
from attendance_guard.models import AttendanceTypeKind, ValidationMode

DEFAULT_ROUTE_TOLERANCE_M = 150.0
DEFAULT_CODE_EXPIRY_HOURS = 24

_KIND_ALIASES = {
    "route-waypoint": AttendanceTypeKind.ROUTE_WAYPOINT,
}


class _ConfigModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class _ConfigEntry(_ConfigModel):
    id: str | None = None
    name: str | None = None
    is_active: bool = True

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def label(self) -> str:
        return self.name or self.id or "unnamed"


class GeoPoint(_ConfigModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    name: str | None = None


class PolygonZone(_ConfigEntry):
    coordinates: list[GeoPoint] = Field(min_length=3)


class IpLocation(_ConfigEntry):
    ip_addresses: list[str] = Field(default_factory=list)


class Route(_ConfigEntry):
    waypoints: list[GeoPoint] = Field(default_factory=list)
    tolerance: float | None = Field(default=None, ge=0)


class QrCodeEntry(_ConfigEntry):
    code: str = Field(min_length=1)
    created_at: datetime | None = None


class GeoPolygonConfig(_ConfigModel):
    polygons: list[PolygonZone]
    validation_mode: ValidationMode = ValidationMode.ANY
    allow_without_location: bool = False


class WifiIpConfig(_ConfigModel):
    ip_locations: list[IpLocation]
    validation_mode: ValidationMode = ValidationMode.ANY
    allow_without_network: bool = False


class RouteWaypointConfig(_ConfigModel):
    routes: list[Route]
    validation_mode: ValidationMode = ValidationMode.ANY
    tolerance: float = Field(default=DEFAULT_ROUTE_TOLERANCE_M, ge=0)

    def tolerance_for(self, route: Route) -> float:
        if route.tolerance is not None:
            return route.tolerance
        return self.tolerance


class QrCodeConfig(_ConfigModel):
    qr_codes: list[QrCodeEntry]
    code_expiry_hours: int = Field(default=DEFAULT_CODE_EXPIRY_HOURS, ge=0)
    one_time_use: bool = False
    require_location: bool = False


AttendanceConfig = Union[GeoPolygonConfig, WifiIpConfig, RouteWaypointConfig, QrCodeConfig]

CONFIG_MODELS: dict[AttendanceTypeKind, type[_ConfigModel]] = {
    AttendanceTypeKind.GEO_POLYGON: GeoPolygonConfig,
    AttendanceTypeKind.WIFI_IP: WifiIpConfig,
    AttendanceTypeKind.ROUTE_WAYPOINT: RouteWaypointConfig,
    AttendanceTypeKind.QR_CODE: QrCodeConfig,
}


def resolve_kind(kind: str | None, slug: str | None = None) -> AttendanceTypeKind:
    """Return the discriminant of a type, falling back to its slug when no kind is stored.

    Factory-made slugs carry a numeric suffix (``geo_polygon_48213``), so a slug matches a
    kind when it equals it or starts with ``<kind>_``.
    """
    if kind:
        normalized = kind.strip().lower()
        if normalized in _KIND_ALIASES:
            return _KIND_ALIASES[normalized]
        try:
            return AttendanceTypeKind(normalized.replace("-", "_"))
        except ValueError:
            raise UnknownAttendanceKindError(kind) from None

    normalized_slug = (slug or "").strip().lower()
    for alias, alias_kind in _KIND_ALIASES.items():
        if normalized_slug == alias or normalized_slug.startswith(f"{alias}_"):
            return alias_kind
    for candidate in AttendanceTypeKind:
        if normalized_slug == candidate.value or normalized_slug.startswith(f"{candidate.value}_"):
            return candidate
    raise UnknownAttendanceKindError(kind or slug)


def _as_point(value: Any) -> Any:
    if isinstance(value, (list, tuple)) and len(value) >= 2:
        return {"lat": value[0], "lng": value[1]}
    return value


def _as_point_list(value: Any) -> Any:
    if not isinstance(value, list):
        return value
    return [_as_point(item) for item in value]


def _normalize_geo_polygon(config: dict[str, Any]) -> dict[str, Any]:
    legacy_polygon = config.pop("polygon", None)
    if "polygons" not in config and isinstance(legacy_polygon, list) and legacy_polygon:
        config["polygons"] = [
            {"id": "polygon_1", "name": "Primary Location", "coordinates": legacy_polygon}
        ]

    polygons = config.get("polygons")
    if not isinstance(polygons, list):
        return config

    normalized: list[Any] = []
    for index, entry in enumerate(polygons, start=1):
        if isinstance(entry, list):
            entry = {"name": f"Location {index}", "coordinates": entry}
        if isinstance(entry, Mapping):
            entry = dict(entry)
            if "coordinates" not in entry and "points" in entry:
                entry["coordinates"] = entry.pop("points")
            entry["coordinates"] = _as_point_list(entry.get("coordinates"))
            entry.setdefault("id", f"polygon_{index}")
        normalized.append(entry)
    config["polygons"] = normalized
    return config


def _merge_allowed_addresses(entry: Mapping[str, Any]) -> list[Any]:
    merged: list[Any] = []
    for key in ("ip_addresses", "allowed_ips", "allowed_ranges"):
        value = entry.get(key)
        if isinstance(value, list):
            merged.extend(value)
    return merged


def _normalize_wifi_ip(config: dict[str, Any]) -> dict[str, Any]:
    if "ip_locations" not in config and ("allowed_ips" in config or "allowed_ranges" in config):
        config["ip_locations"] = [
            {
                "id": "office_1",
                "name": "Primary Office",
                "ip_addresses": _merge_allowed_addresses(config),
            }
        ]

    locations = config.get("ip_locations")
    if not isinstance(locations, list):
        return config

    normalized: list[Any] = []
    for index, entry in enumerate(locations, start=1):
        if isinstance(entry, Mapping):
            merged = _merge_allowed_addresses(entry)
            entry = {k: v for k, v in entry.items() if k not in ("allowed_ips", "allowed_ranges")}
            if "ip_addresses" not in entry or isinstance(entry["ip_addresses"], list):
                entry["ip_addresses"] = merged
            entry.setdefault("id", f"office_{index}")
        normalized.append(entry)
    config["ip_locations"] = normalized
    return config


def _normalize_route_waypoint(config: dict[str, Any]) -> dict[str, Any]:
    legacy_waypoints = config.pop("waypoints", None)
    if "routes" not in config and isinstance(legacy_waypoints, list) and legacy_waypoints:
        config["routes"] = [{"id": "route_1", "name": "Primary Route", "waypoints": legacy_waypoints}]

    routes = config.get("routes")
    if not isinstance(routes, list):
        return config

    normalized: list[Any] = []
    for index, entry in enumerate(routes, start=1):
        if isinstance(entry, Mapping):
            entry = dict(entry)
            entry["waypoints"] = _as_point_list(entry.get("waypoints", []))
            entry.setdefault("id", f"route_{index}")
        normalized.append(entry)
    config["routes"] = normalized
    return config


def _normalize_qr_code(config: dict[str, Any]) -> dict[str, Any]:
    codes = config.get("qr_codes")
    if not isinstance(codes, list):
        return config

    normalized: list[Any] = []
    for entry in codes:
        if isinstance(entry, Mapping) and entry.get("id") in (None, "") and isinstance(entry.get("code"), str):
            # Usage records are keyed by id, so an id-less code gets one derived from its value.
            digest = hashlib.sha256(entry["code"].encode("utf-8")).hexdigest()[:12]
            entry = {**entry, "id": f"qr_{digest}"}
        normalized.append(entry)
    config["qr_codes"] = normalized
    return config


_NORMALIZERS = {
    AttendanceTypeKind.GEO_POLYGON: _normalize_geo_polygon,
    AttendanceTypeKind.WIFI_IP: _normalize_wifi_ip,
    AttendanceTypeKind.ROUTE_WAYPOINT: _normalize_route_waypoint,
    AttendanceTypeKind.QR_CODE: _normalize_qr_code,
}


def normalize_legacy_config(kind: AttendanceTypeKind, raw: Mapping[str, Any]) -> dict[str, Any]:
    return _NORMALIZERS[kind](dict(raw))


def _summarize_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "config"
        parts.append(f"{location}: {error.get('msg', 'invalid')}")
    return "; ".join(parts)


def parse_attendance_config(kind: AttendanceTypeKind, raw: Any) -> AttendanceConfig:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise ConfigShapeError(kind.value, f"config is not valid JSON ({exc})") from exc

    if not isinstance(raw, Mapping):
        raise ConfigShapeError(kind.value, "config must be an object")

    model = CONFIG_MODELS[kind]
    try:
        return model.model_validate(normalize_legacy_config(kind, raw))  # type: ignore[return-value]
    except ValidationError as exc:
        raise ConfigShapeError(kind.value, _summarize_validation_error(exc)) from exc
