# Overview: Service-layer operations for the audit ledger; append-only domain event log.

from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import Customer, LedgerEvent, PurchaseOrder, SalesTransaction, StockMovement, Supplier, Tank
from ..units import ZERO, to_quantity

"""
Audit Ledger Invariants

- Append-only log of cross-cutting domain events.
- No domain/business logic in the ledger itself.
- Events are written inside the same DB transaction as the domain event they record.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_ledger_event(
    *,
    station_id: int,
    event_type: str,
    entity_type: str,
    entity_id: int,
    caller=None,
    occurred_at: datetime | None = None,
    note: str | None = None,
    payload: dict | None = None,
) -> LedgerEvent:
    """
    Append-only ledger event.

    - No deletes/updates of existing events.
    - payload is serialized to JSON text.
    """
    ev = LedgerEvent(
        station_id=station_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=getattr(caller, "user_id", None),
        actor_role=getattr(caller, "role", None),
        occurred_at=occurred_at,  # if None, db default applies
        note=note[:255] if note else None,
        payload=json.dumps(payload, default=str, sort_keys=True) if payload is not None else None,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_ledger_events(
    *,
    station_id: int,
    entity_type: str | None = None,
    entity_id: int | None = None,
    event_type: str | None = None,
    limit: int = 100,
) -> list[LedgerEvent]:
    query = db.session.query(LedgerEvent).filter(LedgerEvent.station_id == station_id)
    if entity_type:
        query = query.filter(LedgerEvent.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(LedgerEvent.entity_id == entity_id)
    if event_type:
        query = query.filter(LedgerEvent.event_type == event_type)
    return query.order_by(LedgerEvent.id.desc()).limit(max(1, min(limit, 500))).all()


def _latest_movement(tank_id: int) -> StockMovement | None:
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.tank_id == tank_id)
        .order_by(StockMovement.id.desc())
        .first()
    )


def verify_ledgers(station_id: int | None = None) -> list[dict]:
    """
    Read-only integrity check across the mutable ledgers.

    Reports (does not repair):
    - tanks whose current_stock differs from the new_stock of their latest movement
    - customers/suppliers whose balance is below the sum of their open documents

    Returns a list of problem dicts; empty means consistent.
    """
    problems: list[dict] = []

    tanks = db.session.query(Tank)
    if station_id is not None:
        tanks = tanks.filter(Tank.station_id == station_id)
    for tank in tanks.order_by(Tank.id.asc()).all():
        last = _latest_movement(tank.id)
        expected = to_quantity(last.new_stock) if last is not None else ZERO
        if to_quantity(tank.current_stock) != expected:
            problems.append({
                "kind": "tank_stock_mismatch",
                "tank_id": tank.id,
                "current_stock": str(to_quantity(tank.current_stock)),
                "expected_stock": str(expected),
            })

    for model, document, fk in (
        (Customer, SalesTransaction, SalesTransaction.customer_id),
        (Supplier, PurchaseOrder, PurchaseOrder.supplier_id),
    ):
        parties = db.session.query(model)
        if station_id is not None:
            parties = parties.filter((model.station_id == station_id) | (model.station_id.is_(None)))
        for party in parties.order_by(model.id.asc()).all():
            open_total = (
                db.session.query(func.coalesce(func.sum(document.outstanding_cents), 0))
                .filter(fk == party.id)
                .scalar()
            )
            if party.outstanding_cents < int(open_total or 0):
                problems.append({
                    "kind": "balance_below_open_documents",
                    "entity_type": model.__tablename__[:-1],
                    "entity_id": party.id,
                    "outstanding_cents": party.outstanding_cents,
                    "open_documents_cents": int(open_total or 0),
                })

    return problems
