"""Account and position reconciliation.

Fetched broker state is diffed against local rows by external id and applied
in place. Rows that disappear from the broker are left alone; nothing here
deletes accounts or positions.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from brokersync.core.brokers.models import FetchedAccount, FetchedPosition, ReconcileResult
from brokersync.core.parsing import normalize_ticker, to_finite_number
from brokersync.db.models import (
    BrokerageAccount,
    BrokerageConnection,
    BrokeragePosition,
    Symbol,
    utcnow,
)

logger = logging.getLogger(__name__)


def parse_quantity(value: Any) -> Optional[float]:
    """Position quantity: numbers as-is, numeric strings parsed, missing as 0.

    Returns None when the value cannot be used (non-numeric or not finite).
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return 0.0
    return number if math.isfinite(number) else None


def account_external_id(account: FetchedAccount) -> Optional[str]:
    """Stripped string id of a fetched account, or None if it has none."""
    raw_id = account.get("id") if isinstance(account, dict) else None
    if isinstance(raw_id, (int, float)) and not isinstance(raw_id, bool):
        raw_id = str(raw_id)
    if not isinstance(raw_id, str) or not raw_id.strip():
        return None
    return raw_id.strip()


def _position_ticker(position: FetchedPosition) -> str:
    if not isinstance(position, dict):
        return ""
    return normalize_ticker(position.get("symbol") or position.get("ticker"))


class AccountReconciler:
    """Applies fetched accounts and positions to the local tables."""

    def __init__(self, db: Session):
        self.db = db

    def reconcile(
        self,
        connection: BrokerageConnection,
        fetched_accounts: Iterable[FetchedAccount],
        fetched_positions_by_account: Dict[str, List[FetchedPosition]],
    ) -> ReconcileResult:
        """Reconcile one connection's fetched state and commit.

        Args:
            connection: Connection being synced
            fetched_accounts: Provider accounts (id, name, type, currency)
            fetched_positions_by_account: Provider positions keyed by external account id

        Returns:
            ReconcileResult with counts and per-row warnings
        """
        result = ReconcileResult()
        now = utcnow()

        accounts = self._apply_accounts(connection, fetched_accounts, now, result)
        result.accounts = len(accounts)

        tickers = set()
        for external_id, positions in fetched_positions_by_account.items():
            if external_id not in accounts:
                continue
            for position in positions or []:
                ticker = _position_ticker(position)
                if ticker:
                    tickers.add(ticker)
        symbols = self._ensure_symbols(connection.user_id, tickers)

        for external_id, positions in fetched_positions_by_account.items():
            account = accounts.get(external_id)
            if account is None:
                result.warn(f"No local account for external id {external_id}; positions skipped")
                continue
            self._apply_positions(account, positions or [], symbols, now, result)

        result.positions = result.positions_created + result.positions_updated

        self.db.flush()
        connection.last_synced_at = now
        self.db.commit()

        logger.info(
            f"Reconciled connection {connection.id}: {result.accounts} accounts, "
            f"{result.positions} positions ({result.positions_created} new, "
            f"{result.positions_updated} updated, {result.skipped} skipped)"
        )
        return result

    def _apply_accounts(
        self,
        connection: BrokerageConnection,
        fetched_accounts: Iterable[FetchedAccount],
        now,
        result: ReconcileResult,
    ) -> Dict[str, BrokerageAccount]:
        existing = {
            account.external_id: account
            for account in self.db.query(BrokerageAccount)
            .filter_by(connection_id=connection.id)
            .all()
        }

        applied: Dict[str, BrokerageAccount] = {}
        inserts = []
        for fetched in fetched_accounts:
            external_id = account_external_id(fetched)
            if external_id is None:
                result.warn("Skipping fetched account without an id")
                continue

            account = existing.get(external_id) or applied.get(external_id)
            if account is None:
                account = BrokerageAccount(connection_id=connection.id, external_id=external_id)
                inserts.append(account)
                result.accounts_created += 1
            elif external_id not in applied:
                result.accounts_updated += 1

            account.name = fetched.get("name")
            account.account_type = fetched.get("type")
            account.currency = fetched.get("currency")
            account.metadata_ = dict(fetched)
            account.last_synced_at = now
            applied[external_id] = account

        if inserts:
            self.db.add_all(inserts)
        self.db.flush()
        return applied

    def _ensure_symbols(self, owner_id: str, tickers: Iterable[str]) -> Dict[str, Symbol]:
        """Get or create a Symbol row per ticker for the owner."""
        tickers = sorted(set(tickers))
        if not tickers:
            return {}

        symbols = self._load_symbols(owner_id, tickers)
        for ticker in tickers:
            if ticker in symbols:
                continue
            symbol = Symbol(owner_id=owner_id, ticker=ticker, asset_type="EQUITY", quote_currency="USD")
            try:
                with self.db.begin_nested():
                    self.db.add(symbol)
                symbols[ticker] = symbol
            except IntegrityError:
                # Created concurrently; use the winner's row
                logger.debug(f"Symbol {ticker} already exists for owner {owner_id}")
                symbols.update(self._load_symbols(owner_id, [ticker]))
        return symbols

    def _load_symbols(self, owner_id: str, tickers: List[str]) -> Dict[str, Symbol]:
        rows = (
            self.db.query(Symbol)
            .filter(Symbol.owner_id == owner_id, Symbol.ticker.in_(tickers))
            .all()
        )
        return {row.ticker: row for row in rows}

    def _apply_positions(
        self,
        account: BrokerageAccount,
        positions: List[FetchedPosition],
        symbols: Dict[str, Symbol],
        now,
        result: ReconcileResult,
    ) -> None:
        existing = {
            position.symbol: position
            for position in self.db.query(BrokeragePosition).filter_by(account_id=account.id).all()
        }

        for fetched in positions:
            ticker = _position_ticker(fetched)
            if not ticker:
                result.warn(f"Skipping position without a symbol in account {account.external_id}")
                continue

            quantity = parse_quantity(fetched.get("quantity"))
            if quantity is None:
                result.warn(f"Skipping {ticker} in account {account.external_id}: invalid quantity")
                continue

            symbol = symbols.get(ticker)
            metadata = dict(fetched)
            metadata["local_symbol_id"] = symbol.id if symbol is not None else None

            position = existing.get(ticker)
            if position is None:
                position = BrokeragePosition(account_id=account.id, symbol=ticker)
                self.db.add(position)
                existing[ticker] = position
                result.positions_created += 1
            else:
                result.positions_updated += 1

            position.quantity = quantity
            position.cost_basis = to_finite_number(fetched.get("cost_basis"))
            position.metadata_ = metadata
            position.last_synced_at = now
