"""
Station Access Service: Caller Context and Station Scoping Helpers

WHY: Centralize station validation logic for reuse across services and routes.
Every operation on a station-scoped entity is parameterized by the caller's
station and role, and cross-station access must be explicitly denied.

SECURITY INVARIANTS:
1. Every request carries a CallerContext (user, station, role)
2. Station IDs from client input are validated against the caller's station
3. Only unrestricted roles (multi-station admins) cross station boundaries
4. Denials are logged and never reveal whether the foreign entity exists

USAGE:
    from stationledger.services.access_service import require_station_access

    require_station_access(caller, tank.station_id)
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app, has_app_context

from ..errors import AccessDenied, NotFound
from ..extensions import db
from ..models import Station
from ..permissions import role_has_permission


DEFAULT_UNRESTRICTED_ROLES = frozenset({"admin"})


@dataclass(frozen=True)
class CallerContext:
    user_id: int | None
    station_id: int | None
    role: str

    @property
    def is_unrestricted(self) -> bool:
        return self.role in _unrestricted_roles()

    def can(self, permission_code: str) -> bool:
        return role_has_permission(self.role, permission_code)


def _unrestricted_roles() -> frozenset[str]:
    if has_app_context():
        return current_app.config.get("UNRESTRICTED_ROLES", DEFAULT_UNRESTRICTED_ROLES)
    return DEFAULT_UNRESTRICTED_ROLES


def _log_denial(caller: CallerContext, reason: str) -> None:
    if has_app_context():
        current_app.logger.warning(
            "Access denied user_id=%s station_id=%s role=%s: %s",
            caller.user_id, caller.station_id, caller.role, reason,
        )


def can_access_station(caller: CallerContext, station_id: int | None) -> bool:
    """Station-less entities (shared customers/suppliers) are visible to everyone."""
    if station_id is None or caller.is_unrestricted:
        return True
    return caller.station_id is not None and caller.station_id == station_id


def require_station_access(caller: CallerContext, station_id: int | None) -> None:
    """
    Core station isolation check. Call this before any operation on an
    entity owned by station_id.

    Raises:
        AccessDenied if the caller is bound to a different station
    """
    if not can_access_station(caller, station_id):
        _log_denial(caller, f"station {station_id} outside caller scope")
        raise AccessDenied("Access to this station is not allowed")


def require_permission(caller: CallerContext, permission_code: str) -> None:
    if not caller.can(permission_code):
        _log_denial(caller, f"missing permission {permission_code}")
        raise AccessDenied(
            "Permission denied",
            details={"required_permission": permission_code},
        )


def require_station(station_id: int, caller: CallerContext) -> Station:
    """Validate a client-supplied station_id exists and is within the caller's scope."""
    require_station_access(caller, station_id)
    station = db.session.get(Station, station_id)
    if station is None:
        raise NotFound(f"Station {station_id} not found")
    return station


def resolve_station_id(caller: CallerContext, requested: int | None) -> int:
    """
    Pick the station a list/report query runs against.

    Station-bound callers default to their own station; unrestricted callers
    must name one.
    """
    if requested is None:
        if caller.station_id is None:
            raise AccessDenied("station_id is required for multi-station callers")
        return caller.station_id
    require_station_access(caller, requested)
    return requested


def get_scoped(model, entity_id: int, caller: CallerContext, *, label: str | None = None):
    """
    Load a station-scoped entity by id.

    Raises NotFound if missing and AccessDenied if it belongs to another
    station.
    """
    entity = db.session.get(model, entity_id)
    name = label or model.__name__
    if entity is None:
        raise NotFound(f"{name} {entity_id} not found")
    require_station_access(caller, getattr(entity, "station_id", None))
    return entity


def scoped_query(model, caller: CallerContext, station_id: int | None = None):
    """
    Query a station-scoped model restricted to what the caller may see.

    Models with a nullable station_id (customers, suppliers) also return the
    shared rows.
    """
    query = db.session.query(model)
    column = model.station_id
    if station_id is not None:
        require_station_access(caller, station_id)
        target = station_id
    elif caller.is_unrestricted:
        return query
    else:
        target = caller.station_id

    if column.nullable:
        return query.filter((column == target) | (column.is_(None)))
    return query.filter(column == target)
