"""Transaction lifecycle: create, approve, post and reverse journal entries.

Status moves forward only::

    DRAFT --approve--> APPROVED --post--> POSTED --reverse--> REVERSED

A posted transaction is never edited.  Reversal creates, approves and posts a
mirror transaction and marks the original REVERSED, all in one unit of work.
"""
from __future__ import annotations

import dataclasses
import datetime
import logging
import secrets
import string
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ipsas_ledger.config import settings
from ipsas_ledger.database import atomic, flush_or_raise
from ipsas_ledger.exceptions import (
    ConflictError,
    DuplicateKeyError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    UnbalancedError,
)
from ipsas_ledger.models.base import utcnow
from ipsas_ledger.models.enums import SourceModule, TransactionStatus
from ipsas_ledger.models.fund import Fund
from ipsas_ledger.models.gl import Account, GLEntry, GLTransaction
from ipsas_ledger.models.org import Entity
from ipsas_ledger.schemas import JournalEntryCreate, JournalLineIn
from ipsas_ledger.services.audit_service import AuditWriter, NullAuditWriter, build_event
from ipsas_ledger.services.fiscal import get_fiscal_period
from ipsas_ledger.services.journal_validator import (
    TransactionSnapshot,
    ensure_balanced,
    line_totals,
    load_line_accounts,
    to_money,
    validate_journal_lines,
)
from ipsas_ledger.services.pagination import Page, PageParams, paginate

logger = logging.getLogger(__name__)

NUMBER_ALPHABET = string.ascii_uppercase + string.digits
NUMBER_RANDOM_LENGTH = 6
NUMBER_ATTEMPTS = 5


def generate_transaction_number(prefix: str, fiscal_year: int, period: int) -> str:
    """``<prefix><yy><pp><6 random A-Z0-9>``, e.g. ``GL2607K3Q9ZD``."""
    suffix = "".join(secrets.choice(NUMBER_ALPHABET) for _ in range(NUMBER_RANDOM_LENGTH))
    return f"{prefix}{fiscal_year % 100:02d}{period:02d}{suffix}"


@dataclasses.dataclass
class ReversalResult:
    original: GLTransaction
    reversal: GLTransaction


class GeneralLedgerService:
    def __init__(
        self,
        db: AsyncSession,
        audit: AuditWriter | None = None,
        number_prefix: str | None = None,
    ):
        self.db = db
        self.audit = audit or NullAuditWriter()
        self.number_prefix = number_prefix or settings.TRANSACTION_NUMBER_PREFIX

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_journal_entry(
        self, data: JournalEntryCreate, created_by: str
    ) -> GLTransaction:
        async with atomic(self.db):
            txn = await self._create_journal_entry(data, created_by)

        logger.info(
            "Created transaction %s with %d lines (debit=%s credit=%s)",
            txn.transaction_number, len(txn.entries), txn.total_debit, txn.total_credit,
        )
        self.audit.fire_and_forget(build_event(
            "gl.transaction.create", created_by, "gl_transaction", txn.id,
            {"transaction_number": txn.transaction_number, "total_debit": str(txn.total_debit)},
        ))
        return await self.get_transaction(txn.id)

    async def approve_transaction(
        self, transaction_id: uuid.UUID, approved_by: str
    ) -> GLTransaction:
        async with atomic(self.db):
            txn = await self._approve(transaction_id, approved_by)

        logger.info("Approved transaction %s by %s", txn.transaction_number, approved_by)
        self.audit.fire_and_forget(build_event(
            "gl.transaction.approve", approved_by, "gl_transaction", txn.id,
            {"transaction_number": txn.transaction_number},
        ))
        return txn

    async def post_transaction(
        self, transaction_id: uuid.UUID, posted_by: str
    ) -> GLTransaction:
        async with atomic(self.db):
            txn = await self._post(transaction_id, posted_by)

        logger.info("Posted transaction %s by %s", txn.transaction_number, posted_by)
        self.audit.fire_and_forget(build_event(
            "gl.transaction.post", posted_by, "gl_transaction", txn.id,
            {"transaction_number": txn.transaction_number},
        ))
        return txn

    async def reverse_transaction(
        self, transaction_id: uuid.UUID, reversed_by: str, reason: str
    ) -> ReversalResult:
        """Reverse a posted transaction with a posted mirror entry.

        Every step shares one unit of work: if creating, approving or posting
        the mirror fails, the original stays POSTED and nothing is written.
        """
        async with atomic(self.db):
            original = await self._get_for_update(transaction_id)
            if not TransactionSnapshot.of(original).can_be_reversed():
                raise InvalidStateError(
                    "Only posted transactions can be reversed",
                    {"transaction_number": original.transaction_number, "status": original.status},
                )
            reason = (reason or "").strip()
            if not reason:
                raise InvalidInputError(
                    "Reversal reason is required",
                    {"transaction_number": original.transaction_number},
                )

            mirror = JournalEntryCreate(
                transaction_date=datetime.date.today(),
                description=f"Reversal of {original.transaction_number}: {reason}"[:1000],
                reference_number=original.transaction_number,
                source_module=SourceModule(original.source_module),
                source_document_id=original.source_document_id,
                fund_id=original.fund_id,
                entity_id=original.entity_id,
                entries=[
                    JournalLineIn(
                        account_id=entry.account_id,
                        debit_amount=entry.credit_amount,
                        credit_amount=entry.debit_amount,
                        description=(
                            f"Reversal: {entry.description}" if entry.description else "Reversal"
                        )[:500],
                        cost_center=entry.cost_center,
                        project_code=entry.project_code,
                        department_code=entry.department_code,
                    )
                    for entry in original.entries
                ],
            )

            reversal = await self._create_journal_entry(mirror, reversed_by)
            await self._approve(reversal.id, reversed_by)
            reversal = await self._post(reversal.id, reversed_by)

            original.status = TransactionStatus.REVERSED.value
            original.reversed_by = reversed_by
            original.reversed_at = utcnow()
            original.reversal_reason = reason
            original.reversed_by_transaction_id = reversal.id
            await self.db.flush()

        logger.info(
            "Reversed transaction %s with %s: %s",
            original.transaction_number, reversal.transaction_number, reason,
        )
        self.audit.fire_and_forget(build_event(
            "gl.transaction.reverse", reversed_by, "gl_transaction", original.id,
            {
                "transaction_number": original.transaction_number,
                "reversal_transaction_id": str(reversal.id),
                "reversal_transaction_number": reversal.transaction_number,
                "reason": reason,
            },
        ))
        return ReversalResult(
            original=await self.get_transaction(original.id),
            reversal=await self.get_transaction(reversal.id),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_transaction(self, transaction_id: uuid.UUID) -> GLTransaction:
        """Transaction with its entries, in line order, and each entry's account."""
        stmt = (
            select(GLTransaction)
            .where(GLTransaction.id == transaction_id)
            .options(selectinload(GLTransaction.entries).selectinload(GLEntry.account))
            .execution_options(populate_existing=True)
        )
        txn = (await self.db.execute(stmt)).scalar_one_or_none()
        if txn is None:
            raise NotFoundError("Transaction", transaction_id)
        return txn

    async def list_transactions(
        self,
        entity_id: uuid.UUID,
        params: PageParams,
        fund_id: uuid.UUID | None = None,
        status: TransactionStatus | None = None,
        start_date: datetime.date | None = None,
        end_date: datetime.date | None = None,
    ) -> Page[GLTransaction]:
        stmt = select(GLTransaction).where(GLTransaction.entity_id == entity_id)
        if fund_id is not None:
            stmt = stmt.where(GLTransaction.fund_id == fund_id)
        if status is not None:
            stmt = stmt.where(GLTransaction.status == TransactionStatus(status).value)
        if start_date is not None:
            stmt = stmt.where(GLTransaction.transaction_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(GLTransaction.transaction_date <= end_date)
        return await paginate(self.db, stmt, GLTransaction, params)

    # ------------------------------------------------------------------
    # Steps (run inside the caller's unit of work)
    # ------------------------------------------------------------------

    async def _create_journal_entry(
        self, data: JournalEntryCreate, created_by: str
    ) -> GLTransaction:
        accounts = await load_line_accounts(self.db, data.entries)
        validate_journal_lines(data.entries, accounts)
        total_debit, total_credit = line_totals(data.entries)
        ensure_balanced(total_debit, total_credit)

        entity = await self.db.get(Entity, data.entity_id)
        if entity is None:
            raise NotFoundError("Entity", data.entity_id)
        fund = await self.db.get(Fund, data.fund_id)
        if fund is None:
            raise NotFoundError("Fund", data.fund_id)
        if fund.entity_id != entity.id:
            raise InvalidInputError(
                f"Fund {fund.code} does not belong to entity {entity.code}",
                {"fund_id": str(fund.id), "entity_id": str(entity.id)},
            )

        fiscal_year, period = get_fiscal_period(data.transaction_date, entity.fiscal_year_end)
        transaction_number = await self._assign_transaction_number(
            data.transaction_number, fiscal_year, period
        )

        txn = GLTransaction(
            transaction_number=transaction_number,
            transaction_date=data.transaction_date,
            posting_date=data.posting_date or data.transaction_date,
            description=data.description,
            reference_number=data.reference_number,
            source_module=data.source_module.value,
            source_document_id=data.source_document_id,
            fund_id=data.fund_id,
            entity_id=data.entity_id,
            fiscal_year=fiscal_year,
            period=period,
            status=TransactionStatus.DRAFT.value,
            total_debit=total_debit,
            total_credit=total_credit,
            created_by=created_by,
            entries=[
                GLEntry(
                    account_id=line.account_id,
                    debit_amount=to_money(line.debit_amount),
                    credit_amount=to_money(line.credit_amount),
                    description=line.description,
                    line_number=line_number,
                    cost_center=line.cost_center,
                    project_code=line.project_code,
                    department_code=line.department_code,
                )
                for line_number, line in enumerate(data.entries, start=1)
            ],
        )
        self.db.add(txn)
        await flush_or_raise(self.db, f"Transaction number {transaction_number} already exists")
        return txn

    async def _approve(self, transaction_id: uuid.UUID, approved_by: str) -> GLTransaction:
        txn = await self._get_for_update(transaction_id)
        snapshot = TransactionSnapshot.of(txn)
        if not snapshot.can_be_approved():
            raise InvalidStateError(
                f"Only draft transactions can be approved; {txn.transaction_number} is {txn.status}",
                {"transaction_number": txn.transaction_number, "status": txn.status},
            )
        if not snapshot.is_balanced:
            raise UnbalancedError(snapshot.total_debit, snapshot.total_credit)

        txn.status = TransactionStatus.APPROVED.value
        txn.approved_by = approved_by
        txn.approved_at = utcnow()
        await self.db.flush()
        return txn

    async def _post(self, transaction_id: uuid.UUID, posted_by: str) -> GLTransaction:
        txn = await self._get_for_update(transaction_id)
        if not TransactionSnapshot.of(txn).can_be_posted():
            raise InvalidStateError(
                "Transaction cannot be posted: only approved, balanced transactions can be posted",
                {"transaction_number": txn.transaction_number, "status": txn.status},
            )

        account_ids = {entry.account_id for entry in txn.entries}
        result = await self.db.execute(
            select(Account)
            .where(Account.id.in_(account_ids))
            .with_for_update(read=True)
            .execution_options(populate_existing=True)
        )
        accounts = {account.id: account for account in result.scalars().all()}
        for entry in txn.entries:
            account = accounts.get(entry.account_id)
            if account is None:
                raise NotFoundError("Account", entry.account_id)
            if not account.is_active:
                raise ConflictError(
                    f"Account is not active: {account.code}",
                    {
                        "transaction_number": txn.transaction_number,
                        "line_number": entry.line_number,
                        "account_code": account.code,
                    },
                )

        txn.status = TransactionStatus.POSTED.value
        txn.posted_by = posted_by
        txn.posted_at = utcnow()
        await self.db.flush()
        return txn

    async def _get_for_update(self, transaction_id: uuid.UUID) -> GLTransaction:
        txn = await self.db.get(
            GLTransaction, transaction_id, with_for_update=True, populate_existing=True
        )
        if txn is None:
            raise NotFoundError("Transaction", transaction_id)
        return txn

    async def _assign_transaction_number(
        self, requested: str | None, fiscal_year: int, period: int
    ) -> str:
        if requested:
            if await self._number_taken(requested):
                raise DuplicateKeyError(
                    f"Transaction number {requested} already exists",
                    {"transaction_number": requested},
                )
            return requested

        for _ in range(NUMBER_ATTEMPTS):
            candidate = generate_transaction_number(self.number_prefix, fiscal_year, period)
            if not await self._number_taken(candidate):
                return candidate
            logger.warning("Generated transaction number %s collided, retrying", candidate)
        raise ConflictError(
            "Could not generate a unique transaction number",
            {"fiscal_year": fiscal_year, "period": period},
        )

    async def _number_taken(self, number: str) -> bool:
        result = await self.db.execute(
            select(GLTransaction.id).where(GLTransaction.transaction_number == number).limit(1)
        )
        return result.scalar_one_or_none() is not None
