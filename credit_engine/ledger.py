"""Credit ledger — sole owner of loans, positions, hedges, liquidations and alerts.

Every mutation of a given id runs under that id's ``asyncio.Lock`` and swaps
in a new frozen record, so a transition reads the current state and writes
the next one as a single unit and readers only ever see whole records.
Nothing is ordered across different ids.
"""
from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import os
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

from .errors import ConflictError, NotFoundError, ValidationError
from .models import (
    ENTRY_LOAN_REPAYMENT,
    HEDGE_CANCELLED,
    HEDGE_EXECUTED,
    HEDGE_FAILED,
    HEDGE_PENDING,
    LOAN_ACTIVE,
    LOAN_PENDING_APPROVAL,
    LOAN_REPAID,
    POSITION_CLOSED,
    POSITION_LIVE_STATUSES,
    Hedge,
    LedgerEntry,
    Liquidation,
    Loan,
    LoanTerms,
    RiskAlert,
    VaultPosition,
    new_id,
    utc_now,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")

# Fields fixed at origination; transitions may never rewrite them.
_LOAN_FIXED_FIELDS = frozenset(
    {
        "id",
        "owner_id",
        "principal_amount",
        "principal_asset",
        "collateral_amount",
        "collateral_asset",
        "interest_rate",
        "ltv_ratio",
        "term_days",
        "terms",
        "requested_at",
        "created_at",
        "repaid_amount",
    }
)
_VALUATION_FIELDS = frozenset({"value_usd", "health_factor", "metadata"})
_HEDGE_OUTCOMES = frozenset({HEDGE_EXECUTED, HEDGE_FAILED, HEDGE_CANCELLED})
_HEDGE_OUTCOME_FIELDS = frozenset({"amount_out", "execution_reference", "details"})

SNAPSHOT_VERSION = 1


class CreditLedger:
    """In-memory credit ledger with optional JSON snapshot persistence."""

    def __init__(self) -> None:
        self._loans: dict[str, Loan] = {}
        self._positions: dict[str, VaultPosition] = {}
        self._hedges: dict[str, Hedge] = {}
        self._liquidations: list[Liquidation] = []
        self._alerts: dict[str, RiskAlert] = {}
        self._entries: list[LedgerEntry] = []
        self._locks: dict[str, asyncio.Lock] = {}
        self._append_lock = asyncio.Lock()

    def _lock_for(self, entity_id: str) -> asyncio.Lock:
        return self._locks.setdefault(entity_id, asyncio.Lock())

    @staticmethod
    def _fetch(store: dict[str, R], entity: str, entity_id: str, owner_id: str | None) -> R:
        record = store.get(entity_id)
        # Records owned by someone else are reported as missing.
        if record is None or (owner_id is not None and record.owner_id != owner_id):
            raise NotFoundError(entity, entity_id)
        return record

    @staticmethod
    def _filter(
        records: Iterable[R], owner_id: str | None = None, status: str | None = None
    ) -> list[R]:
        """Newest first, optionally narrowed by owner and status."""
        selected = [
            r
            for r in records
            if (owner_id is None or r.owner_id == owner_id)
            and (status is None or getattr(r, "status", None) == status)
        ]
        selected.reverse()
        return selected

    # ------------------------------------------------------------------
    # Loans
    # ------------------------------------------------------------------

    async def create_loan(self, loan: Loan) -> Loan:
        async with self._lock_for(loan.id):
            if loan.id in self._loans:
                raise ConflictError(f"Loan {loan.id} already exists", loan.id, loan.status)
            self._loans[loan.id] = loan
        logger.debug("Loan %s created for owner %s", loan.id, loan.owner_id)
        return loan

    async def get_loan(self, loan_id: str, owner_id: str | None = None) -> Loan:
        return self._fetch(self._loans, "Loan", loan_id, owner_id)

    async def list_loans(
        self, owner_id: str | None = None, status: str | None = None
    ) -> list[Loan]:
        return self._filter(self._loans.values(), owner_id, status)

    async def transition_loan(
        self,
        loan_id: str,
        allowed_from: Iterable[str],
        to_status: str,
        owner_id: str | None = None,
        **fields: Any,
    ) -> Loan:
        """Move a loan to ``to_status`` if its current status is in ``allowed_from``.

        Raises:
            NotFoundError: unknown loan (or not owned by ``owner_id``).
            ConflictError: current status not in ``allowed_from``.
            ValidationError: ``fields`` tries to rewrite an origination field.
        """
        fixed = _LOAN_FIXED_FIELDS.intersection(fields)
        if fixed:
            name = sorted(fixed)[0]
            raise ValidationError(f"Loan field '{name}' cannot be changed", field=name)

        allowed = frozenset(allowed_from)
        async with self._lock_for(loan_id):
            loan = self._fetch(self._loans, "Loan", loan_id, owner_id)
            if loan.status not in allowed:
                raise ConflictError(
                    f"Loan {loan_id} is {loan.status}; cannot move to {to_status}",
                    loan_id,
                    loan.status,
                )
            updated = dataclasses.replace(
                loan, status=to_status, updated_at=utc_now(), **fields
            )
            self._loans[loan_id] = updated

        logger.info("Loan %s: %s -> %s", loan_id, loan.status, to_status)
        return updated

    async def record_repayment(
        self,
        loan_id: str,
        amount: float,
        allowed_from: Iterable[str] = (LOAN_PENDING_APPROVAL, LOAN_ACTIVE),
        owner_id: str | None = None,
    ) -> tuple[Loan, LedgerEntry]:
        """Apply a repayment and append its ledger entry as one unit.

        The applied amount is capped at the outstanding principal so
        ``repaid_amount`` never exceeds ``principal_amount``; any excess is
        noted on the entry. A loan that becomes fully repaid moves to
        ``repaid``; otherwise its status is left as it was.
        """
        if amount <= 0:
            raise ValidationError("Repayment amount must be greater than 0", "amount", amount)

        allowed = frozenset(allowed_from)
        async with self._lock_for(loan_id):
            loan = self._fetch(self._loans, "Loan", loan_id, owner_id)
            if loan.status not in allowed:
                raise ConflictError(
                    f"Loan {loan_id} is {loan.status}; repayment not allowed",
                    loan_id,
                    loan.status,
                )

            outstanding = loan.outstanding_amount
            fully_repaid = amount >= outstanding
            applied = outstanding if fully_repaid else amount
            repaid = loan.principal_amount if fully_repaid else loan.repaid_amount + amount
            now = utc_now()

            updated = dataclasses.replace(
                loan,
                repaid_amount=repaid,
                status=LOAN_REPAID if fully_repaid else loan.status,
                last_payment_at=now,
                updated_at=now,
            )
            entry = LedgerEntry(
                id=new_id(),
                owner_id=loan.owner_id,
                type=ENTRY_LOAN_REPAYMENT,
                reference_id=loan_id,
                amount=applied,
                asset=loan.principal_asset,
                created_at=now,
                details={
                    "fullyRepaid": fully_repaid,
                    "repaidAmount": repaid,
                    "outstanding": updated.outstanding_amount,
                    "excess": max(amount - applied, 0.0),
                },
            )
            self._loans[loan_id] = updated
            self._entries.append(entry)

        return updated, entry

    # ------------------------------------------------------------------
    # Vault positions
    # ------------------------------------------------------------------

    async def create_vault_position(self, position: VaultPosition) -> VaultPosition:
        if position.amount < 0:
            raise ValidationError("Position amount cannot be negative", "amount", position.amount)
        async with self._lock_for(position.id):
            if position.id in self._positions:
                raise ConflictError(
                    f"Position {position.id} already exists", position.id, position.status
                )
            self._positions[position.id] = position
        return position

    async def get_position(self, position_id: str, owner_id: str | None = None) -> VaultPosition:
        return self._fetch(self._positions, "VaultPosition", position_id, owner_id)

    async def list_positions(
        self, owner_id: str | None = None, status: str | None = None
    ) -> list[VaultPosition]:
        return self._filter(self._positions.values(), owner_id, status)

    async def update_position_valuation(self, position_id: str, **fields: Any) -> VaultPosition:
        """Refresh valuation fields of a live (open or closing) position."""
        unknown = set(fields) - _VALUATION_FIELDS
        if unknown:
            name = sorted(unknown)[0]
            raise ValidationError(f"'{name}' is not a valuation field", field=name)

        async with self._lock_for(position_id):
            position = self._fetch(self._positions, "VaultPosition", position_id, None)
            if position.status not in POSITION_LIVE_STATUSES:
                raise ConflictError(
                    f"Position {position_id} is {position.status}; valuation is frozen",
                    position_id,
                    position.status,
                )
            updated = dataclasses.replace(position, updated_at=utc_now(), **fields)
            self._positions[position_id] = updated
        return updated

    async def transition_position(
        self,
        position_id: str,
        allowed_from: Iterable[str],
        to_status: str,
        owner_id: str | None = None,
    ) -> VaultPosition:
        allowed = frozenset(allowed_from)
        async with self._lock_for(position_id):
            position = self._fetch(self._positions, "VaultPosition", position_id, owner_id)
            if position.status not in allowed:
                raise ConflictError(
                    f"Position {position_id} is {position.status}; cannot move to {to_status}",
                    position_id,
                    position.status,
                )
            updated = dataclasses.replace(position, status=to_status, updated_at=utc_now())
            self._positions[position_id] = updated

        logger.info("Position %s: %s -> %s", position_id, position.status, to_status)
        return updated

    async def close_position(
        self,
        position_id: str,
        allowed_from: Iterable[str] = POSITION_LIVE_STATUSES,
        owner_id: str | None = None,
    ) -> VaultPosition:
        return await self.transition_position(
            position_id, allowed_from, POSITION_CLOSED, owner_id=owner_id
        )

    # ------------------------------------------------------------------
    # Hedges
    # ------------------------------------------------------------------

    async def create_hedge(self, hedge: Hedge) -> Hedge:
        async with self._lock_for(hedge.id):
            if hedge.id in self._hedges:
                raise ConflictError(f"Hedge {hedge.id} already exists", hedge.id, hedge.status)
            self._hedges[hedge.id] = hedge
        return hedge

    async def get_hedge(self, hedge_id: str, owner_id: str | None = None) -> Hedge:
        return self._fetch(self._hedges, "Hedge", hedge_id, owner_id)

    async def list_hedges(
        self, owner_id: str | None = None, status: str | None = None
    ) -> list[Hedge]:
        return self._filter(self._hedges.values(), owner_id, status)

    async def update_hedge_outcome(self, hedge_id: str, status: str, **fields: Any) -> Hedge:
        """Settle a pending hedge. A hedge reaches a terminal status exactly once."""
        if status not in _HEDGE_OUTCOMES:
            raise ValidationError(f"'{status}' is not a hedge outcome", "status", status)
        unknown = set(fields) - _HEDGE_OUTCOME_FIELDS
        if unknown:
            name = sorted(unknown)[0]
            raise ValidationError(f"'{name}' is not a hedge outcome field", field=name)

        async with self._lock_for(hedge_id):
            hedge = self._fetch(self._hedges, "Hedge", hedge_id, None)
            if hedge.status != HEDGE_PENDING:
                raise ConflictError(
                    f"Hedge {hedge_id} already settled as {hedge.status}",
                    hedge_id,
                    hedge.status,
                )
            updated = dataclasses.replace(hedge, status=status, updated_at=utc_now(), **fields)
            self._hedges[hedge_id] = updated

        logger.info("Hedge %s: pending -> %s", hedge_id, status)
        return updated

    # ------------------------------------------------------------------
    # Liquidations, entries, alerts (append-only)
    # ------------------------------------------------------------------

    async def record_liquidation(self, liquidation: Liquidation) -> Liquidation:
        if not liquidation.loan_id and not liquidation.position_id:
            raise ValidationError("A liquidation must reference a loan or a position", "loan_id")
        async with self._append_lock:
            self._liquidations.append(liquidation)
        logger.info(
            "Liquidation %s recorded (loan=%s position=%s recovered=%s %s)",
            liquidation.id,
            liquidation.loan_id,
            liquidation.position_id,
            liquidation.recovered_amount,
            liquidation.recovered_asset,
        )
        return liquidation

    async def list_liquidations(self, owner_id: str | None = None) -> list[Liquidation]:
        return self._filter(self._liquidations, owner_id)

    async def append_entry(self, entry: LedgerEntry) -> LedgerEntry:
        async with self._append_lock:
            self._entries.append(entry)
        return entry

    async def list_entries(
        self, owner_id: str | None = None, reference_id: str | None = None
    ) -> list[LedgerEntry]:
        entries = self._filter(self._entries, owner_id)
        if reference_id is not None:
            entries = [e for e in entries if e.reference_id == reference_id]
        return entries

    async def append_risk_alert(self, alert: RiskAlert) -> RiskAlert:
        await self.append_risk_alerts([alert])
        return alert

    async def append_risk_alerts(self, alerts: Iterable[RiskAlert]) -> int:
        """Append a batch of alerts; the whole batch becomes visible at once."""
        batch = list(alerts)
        async with self._append_lock:
            for alert in batch:
                if alert.id in self._alerts:
                    raise ConflictError(f"Alert {alert.id} already exists", alert.id)
            self._alerts.update((alert.id, alert) for alert in batch)
        return len(batch)

    async def list_risk_alerts(self, limit: int | None = None) -> list[RiskAlert]:
        alerts = self._filter(self._alerts.values())
        return alerts if limit is None else alerts[: max(limit, 0)]

    async def mark_alert_processed(self, alert_id: str) -> RiskAlert:
        async with self._append_lock:
            alert = self._fetch(self._alerts, "RiskAlert", alert_id, None)
            updated = dataclasses.replace(alert, processed=True)
            self._alerts[alert_id] = updated
        return updated

    # ------------------------------------------------------------------
    # Snapshot persistence
    # ------------------------------------------------------------------

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "loans": [dataclasses.asdict(r) for r in self._loans.values()],
            "vault_positions": [dataclasses.asdict(r) for r in self._positions.values()],
            "hedges": [dataclasses.asdict(r) for r in self._hedges.values()],
            "liquidations": [dataclasses.asdict(r) for r in self._liquidations],
            "risk_alerts": [dataclasses.asdict(r) for r in self._alerts.values()],
            "entries": [dataclasses.asdict(r) for r in self._entries],
        }

    def _restore(self, data: dict[str, Any]) -> None:
        self._loans = {r.id: r for r in (_decode(Loan, raw) for raw in data.get("loans", []))}
        self._positions = {
            r.id: r for r in (_decode(VaultPosition, raw) for raw in data.get("vault_positions", []))
        }
        self._hedges = {r.id: r for r in (_decode(Hedge, raw) for raw in data.get("hedges", []))}
        self._liquidations = [_decode(Liquidation, raw) for raw in data.get("liquidations", [])]
        self._alerts = {
            r.id: r for r in (_decode(RiskAlert, raw) for raw in data.get("risk_alerts", []))
        }
        self._entries = [_decode(LedgerEntry, raw) for raw in data.get("entries", [])]

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> CreditLedger:
        ledger = cls()
        ledger._restore(data)
        return ledger

    def reload(self, path: str | Path) -> None:
        """Replace in-memory state with the snapshot at ``path``, if one exists."""
        path = Path(path)
        if not path.exists():
            return
        with open(path) as f:
            self._restore(json.load(f))
        logger.debug("Ledger reloaded from %s", path)

    def save(self, path: str | Path) -> None:
        """Write a JSON snapshot, replacing the previous file atomically."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(self.to_snapshot(), f, default=_json_default, indent=2)
        os.replace(tmp_path, path)
        logger.info("Ledger snapshot written to %s", path)

    @classmethod
    def load(cls, path: str | Path) -> CreditLedger:
        """Restore a ledger from a snapshot; a missing file yields an empty ledger."""
        path = Path(path)
        if not path.exists():
            logger.info("No ledger snapshot at %s, starting empty", path)
            return cls()
        with open(path) as f:
            data = json.load(f)
        ledger = cls.from_snapshot(data)
        logger.info(
            "Ledger loaded from %s (%d loans, %d positions, %d hedges)",
            path,
            len(ledger._loans),
            len(ledger._positions),
            len(ledger._hedges),
        )
        return ledger


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _decode(cls: type[R], raw: dict[str, Any]) -> R:
    """Rebuild a record dataclass from its snapshot dict."""
    kwargs: dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        if f.name not in raw:
            continue
        value = raw[f.name]
        if isinstance(value, str) and (f.name.endswith("_at") or f.name == "due_date"):
            value = datetime.fromisoformat(value)
        elif f.name == "terms" and isinstance(value, dict):
            value = LoanTerms(**value)
        kwargs[f.name] = value
    return cls(**kwargs)
