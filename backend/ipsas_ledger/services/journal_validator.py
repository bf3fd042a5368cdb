"""Double-entry rules for journal lines and transaction snapshots.

``validate_journal_lines`` is pure: it checks a proposed set of lines against
already-loaded accounts and raises on the first violation.  Balance is checked
separately with ``ensure_balanced`` once the caller has summed the lines.
"""
from __future__ import annotations

import dataclasses
import uuid
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ipsas_ledger.exceptions import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    UnbalancedError,
)
from ipsas_ledger.models.enums import TransactionStatus
from ipsas_ledger.models.gl import Account, GLTransaction

CENT = Decimal("0.01")
BALANCE_TOLERANCE = CENT
MIN_LINES = 2
ZERO = Decimal("0.00")


class JournalLine(Protocol):
    account_id: uuid.UUID
    debit_amount: Any
    credit_amount: Any


def to_money(value: Any) -> Decimal:
    """Coerce *value* to a two-decimal ``Decimal``; ``None`` is zero."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def line_totals(lines: Iterable[JournalLine]) -> tuple[Decimal, Decimal]:
    total_debit = ZERO
    total_credit = ZERO
    for line in lines:
        total_debit += to_money(line.debit_amount)
        total_credit += to_money(line.credit_amount)
    return total_debit, total_credit


def is_balanced(total_debit: Decimal, total_credit: Decimal) -> bool:
    return abs(total_debit - total_credit) <= BALANCE_TOLERANCE


def ensure_balanced(
    total_debit: Decimal,
    total_credit: Decimal,
    message: str = "Journal entry is not balanced",
) -> None:
    if not is_balanced(total_debit, total_credit):
        raise UnbalancedError(total_debit, total_credit, message)


def validate_journal_lines(
    lines: Sequence[JournalLine],
    accounts: Mapping[uuid.UUID, Account],
) -> None:
    """Check structure and account eligibility of a proposed entry set.

    Raises ``InvalidInputError`` for fewer than two lines, a line with both or
    neither side populated, or an account used twice; ``NotFoundError`` for an
    unknown account; ``ConflictError`` for an inactive or summary account.
    """
    if len(lines) < MIN_LINES:
        raise InvalidInputError(
            "A journal entry requires at least two entries",
            {"line_count": len(lines)},
        )

    for line_number, line in enumerate(lines, start=1):
        debit = to_money(line.debit_amount)
        credit = to_money(line.credit_amount)

        if debit < 0 or credit < 0:
            raise InvalidInputError(
                f"Line {line_number}: amounts cannot be negative",
                {"line_number": line_number},
            )
        if debit > 0 and credit > 0:
            raise InvalidInputError(
                f"Line {line_number}: entry cannot have both debit and credit amounts",
                {"line_number": line_number, "debit_amount": str(debit), "credit_amount": str(credit)},
            )
        if debit == 0 and credit == 0:
            raise InvalidInputError(
                f"Line {line_number}: entry must have either a debit or a credit amount",
                {"line_number": line_number},
            )

        account = accounts.get(line.account_id)
        if account is None:
            raise NotFoundError("Account", line.account_id)
        if not account.is_active:
            raise ConflictError(
                f"Account is not active: {account.code}",
                {"line_number": line_number, "account_id": str(account.id), "account_code": account.code},
            )
        if not account.is_detail_account:
            raise ConflictError(
                f"Cannot post to summary account {account.code}",
                {"line_number": line_number, "account_id": str(account.id), "account_code": account.code},
            )

    counts = Counter(line.account_id for line in lines)
    duplicates = sorted(str(account_id) for account_id, n in counts.items() if n > 1)
    if duplicates:
        raise InvalidInputError(
            "Duplicate accounts found in transaction entries",
            {"account_ids": duplicates},
        )


async def load_line_accounts(
    db: AsyncSession,
    lines: Iterable[JournalLine],
) -> dict[uuid.UUID, Account]:
    """Fetch every account referenced by *lines*, keyed by id."""
    account_ids = {line.account_id for line in lines}
    if not account_ids:
        return {}
    result = await db.execute(select(Account).where(Account.id.in_(account_ids)))
    return {account.id: account for account in result.scalars().all()}


# ---------------------------------------------------------------------------
# Transaction snapshot
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class TransactionSnapshot:
    """Immutable view of a transaction's status and line totals."""

    status: TransactionStatus
    total_debit: Decimal
    total_credit: Decimal
    line_count: int

    @classmethod
    def of(cls, txn: GLTransaction) -> TransactionSnapshot:
        total_debit, total_credit = line_totals(txn.entries)
        return cls(
            status=TransactionStatus(txn.status),
            total_debit=total_debit,
            total_credit=total_credit,
            line_count=len(txn.entries),
        )

    @property
    def is_balanced(self) -> bool:
        return is_balanced(self.total_debit, self.total_credit)

    def can_be_approved(self) -> bool:
        return self.status == TransactionStatus.DRAFT

    def can_be_posted(self) -> bool:
        return self.status == TransactionStatus.APPROVED and self.is_balanced

    def can_be_reversed(self) -> bool:
        return self.status == TransactionStatus.POSTED
