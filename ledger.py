"""Account balance reconciliation.

Balances are maintained incrementally: every transaction that becomes
``completed`` adds its signed amount to its account, and every transaction
that stops being completed (status change, edit of amount/type/account, or
deletion) has that effect reversed first. ``BalanceReconciler.recalculate``
replays the ledger from the initial balance when the incremental history has
drifted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import NotFoundError, ReconciliationFailure
from models import (
    Account,
    BalanceAuditLog,
    Transaction,
    TransactionStatus,
    TransactionType,
)

logger = logging.getLogger(__name__)


class BalanceEffect(str, Enum):
    none = "none"
    apply = "apply"
    reverse = "reverse"
    resettle = "resettle"


# Keys are (previous status, new status); None on the left means the
# transaction is being created, None on the right that it is being deleted.
_S = TransactionStatus
TRANSITIONS: dict[
    tuple[Optional[TransactionStatus], Optional[TransactionStatus]], BalanceEffect
] = {
    (None, _S.pending): BalanceEffect.none,
    (None, _S.failed): BalanceEffect.none,
    (None, _S.completed): BalanceEffect.apply,
    (_S.pending, _S.pending): BalanceEffect.none,
    (_S.pending, _S.failed): BalanceEffect.none,
    (_S.pending, _S.completed): BalanceEffect.apply,
    (_S.failed, _S.pending): BalanceEffect.none,
    (_S.failed, _S.failed): BalanceEffect.none,
    (_S.failed, _S.completed): BalanceEffect.apply,
    (_S.completed, _S.pending): BalanceEffect.reverse,
    (_S.completed, _S.failed): BalanceEffect.reverse,
    (_S.completed, _S.completed): BalanceEffect.resettle,
    (_S.pending, None): BalanceEffect.none,
    (_S.failed, None): BalanceEffect.none,
    (_S.completed, None): BalanceEffect.reverse,
}
del _S


@dataclass(frozen=True)
class LedgerEntry:
    """The balance-relevant fields of a transaction at one point in time."""

    amount_cents: int
    type: TransactionType
    status: TransactionStatus
    account_id: int
    transaction_id: Optional[int] = None
    description: str = ""

    @classmethod
    def of(cls, txn: Transaction) -> "LedgerEntry":
        return cls(
            amount_cents=txn.amount_cents,
            type=TransactionType(txn.type),
            status=TransactionStatus(txn.status),
            account_id=txn.account_id,
            transaction_id=txn.id,
            description=txn.description,
        )

    @property
    def signed_cents(self) -> int:
        if self.type == TransactionType.expense:
            return -self.amount_cents
        return self.amount_cents

    def same_effect(self, other: "LedgerEntry") -> bool:
        return (
            self.amount_cents == other.amount_cents
            and self.type == other.type
            and self.account_id == other.account_id
        )


def plan_effect(
    before: Optional[LedgerEntry], after: Optional[LedgerEntry]
) -> BalanceEffect:
    if before is None and after is None:
        return BalanceEffect.none
    effect = TRANSITIONS[
        (
            before.status if before else None,
            after.status if after else None,
        )
    ]
    # completed -> completed only touches the balance when the effect moved
    if effect == BalanceEffect.resettle and before.same_effect(after):
        return BalanceEffect.none
    return effect


def signed_amount_expr():
    return case(
        (Transaction.type == TransactionType.expense, -Transaction.amount_cents),
        else_=Transaction.amount_cents,
    )


class BalanceReconciler:
    def __init__(self, session: Session, company_id: int) -> None:
        self.session = session
        self.company_id = company_id

    def apply_to_balance(self, entry: LedgerEntry, account_id: int) -> bool:
        if entry.status != TransactionStatus.completed:
            logger.warning(
                f"balance_apply_skipped: transaction={entry.transaction_id} "
                f"status={entry.status.value}"
            )
            return False
        return self._safe_adjust(
            account_id,
            entry.signed_cents,
            f"Transaction {entry.transaction_id}: {entry.description}",
            action="apply",
        )

    def reverse_from_balance(self, entry: LedgerEntry, account_id: int) -> bool:
        return self._safe_adjust(
            account_id,
            -entry.signed_cents,
            f"Reversal of transaction {entry.transaction_id}: {entry.description}",
            action="reverse",
        )

    def settle(
        self,
        before: Optional[LedgerEntry],
        after: Optional[LedgerEntry],
        persist: Callable[[], Optional[Transaction]],
    ) -> Optional[Transaction]:
        """Persist a transaction change and move its balance effect with it.

        ``before`` is the last persisted state (None on create) and ``after``
        the intended state (None on delete). The old effect is reversed
        against the old account before ``persist`` runs, and the new effect is
        applied against the new account afterwards. Balance failures are
        logged and do not undo the persisted record.
        """
        effect = plan_effect(before, after)
        if effect in (BalanceEffect.reverse, BalanceEffect.resettle):
            self.reverse_from_balance(before, before.account_id)

        txn = persist()

        if effect in (BalanceEffect.apply, BalanceEffect.resettle) and txn is not None:
            entry = LedgerEntry.of(txn)
            self.apply_to_balance(entry, entry.account_id)
        return txn

    def _safe_adjust(
        self, account_id: int, delta_cents: int, description: str, *, action: str
    ) -> bool:
        if delta_cents == 0:
            return True
        try:
            with self.session.begin_nested():
                previous, new = self._write_balance(account_id, delta_cents)
                self.session.add(
                    BalanceAuditLog(
                        account_id=account_id,
                        previous_balance_cents=previous,
                        new_balance_cents=new,
                        change_cents=delta_cents,
                        description=description[:255],
                        performed_at=datetime.utcnow(),
                    )
                )
        except (ReconciliationFailure, SQLAlchemyError) as exc:
            logger.warning(
                f"balance_{action}_failed: account={account_id} "
                f"delta={delta_cents} error={exc}"
            )
            return False
        logger.info(
            f"balance_{action}: account={account_id} delta={delta_cents} "
            f"balance={new}"
        )
        return True

    def _current_balance(self, account_id: int) -> Optional[int]:
        return self.session.execute(
            select(Account.balance_cents).where(
                Account.id == account_id, Account.company_id == self.company_id
            )
        ).scalar_one_or_none()

    def _write_balance(self, account_id: int, delta_cents: int) -> tuple[int, int]:
        previous = self._current_balance(account_id)
        if previous is None:
            raise ReconciliationFailure(account_id, "account not found")
        # single-row increment, never read-modify-write in Python
        self.session.execute(
            update(Account)
            .where(Account.id == account_id, Account.company_id == self.company_id)
            .values(balance_cents=Account.balance_cents + delta_cents)
        )
        return previous, self._current_balance(account_id)

    def replayed_balance(self, account: Account) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(signed_amount_expr()), 0)).where(
                Transaction.account_id == account.id,
                Transaction.status == TransactionStatus.completed,
            )
        ).scalar_one()
        return account.initial_balance_cents + int(total or 0)

    def drift(self, account_id: int) -> int:
        account = self._account(account_id)
        return self._current_balance(account.id) - self.replayed_balance(account)

    def recalculate(self, account_id: int) -> Account:
        """Reset a balance to initial balance plus all completed transactions."""
        account = self._account(account_id)
        previous = self._current_balance(account.id)
        replayed = self.replayed_balance(account)
        count = self.session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.account_id == account.id,
                Transaction.status == TransactionStatus.completed,
            )
        ).scalar_one()
        self.session.execute(
            update(Account)
            .where(Account.id == account.id)
            .values(balance_cents=replayed)
        )
        self.session.add(
            BalanceAuditLog(
                account_id=account.id,
                previous_balance_cents=previous,
                new_balance_cents=replayed,
                change_cents=replayed - previous,
                description=f"Balance recalculation based on {count} transactions",
                performed_at=datetime.utcnow(),
            )
        )
        self.session.flush()
        self.session.refresh(account)
        if replayed != previous:
            logger.warning(
                f"balance_drift_corrected: account={account.id} "
                f"stored={previous} replayed={replayed}"
            )
        return account

    def recalculate_all(self) -> list[dict[str, object]]:
        accounts = self.session.scalars(
            select(Account)
            .where(Account.company_id == self.company_id)
            .order_by(Account.id)
        ).all()
        results: list[dict[str, object]] = []
        for account in accounts:
            try:
                with self.session.begin_nested():
                    self.recalculate(account.id)
                success = True
            except SQLAlchemyError as exc:
                logger.warning(
                    f"balance_recalculate_failed: account={account.id} error={exc}"
                )
                success = False
            results.append(
                {"account_id": account.id, "account_name": account.name, "success": success}
            )
        return results

    def _account(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.company_id != self.company_id:
            raise NotFoundError("Account not found")
        return account
