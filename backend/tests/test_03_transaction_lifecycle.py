"""
Tests 51-80, 167-169: Transaction Lifecycle

Creating journal entries (fiscal period, numbering, atomic persistence),
the forward-only DRAFT -> APPROVED -> POSTED state machine, posting-time
account checks and the unit-of-work helper.
"""
import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import journal
from ipsas_ledger.database import atomic
from ipsas_ledger.exceptions import (
    ConflictError,
    DuplicateKeyError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    UnbalancedError,
)
from ipsas_ledger.models.enums import EntityType, FundType, TransactionStatus
from ipsas_ledger.models.gl import GLEntry, GLTransaction
from ipsas_ledger.schemas import EntityCreate, FundCreate
from ipsas_ledger.services.general_ledger import GeneralLedgerService, generate_transaction_number
from ipsas_ledger.services.pagination import PageParams

RECEIPT = [("1110", "150000.00", "0"), ("4100", "0", "150000.00")]


async def count(db, model):
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


class TestCreateJournalEntry:

    async def test_51_create_balanced_entry_is_draft(self, gl_service, ledger):
        txn = await gl_service.create_journal_entry(journal(ledger, RECEIPT), created_by="clerk")
        assert txn.status == TransactionStatus.DRAFT
        assert txn.total_debit == Decimal("150000.00")
        assert txn.total_credit == Decimal("150000.00")
        assert txn.created_by == "clerk"
        assert [e.line_number for e in txn.entries] == [1, 2]
        assert txn.entries[0].account.code == "1110"

    async def test_52_single_line_rejected(self, gl_service, ledger, db):
        with pytest.raises(InvalidInputError) as exc:
            await gl_service.create_journal_entry(
                journal(ledger, [("1110", "100.00", "0")]), created_by="clerk"
            )
        assert "at least two entries" in exc.value.message
        assert await count(db, GLTransaction) == 0

    async def test_53_line_with_both_sides_rejected(self, gl_service, ledger):
        with pytest.raises(InvalidInputError):
            await gl_service.create_journal_entry(
                journal(ledger, [("1110", "100.00", "50.00"), ("4100", "0", "50.00")]),
                created_by="clerk",
            )

    async def test_54_unbalanced_entry_rejected(self, gl_service, ledger, db):
        with pytest.raises(UnbalancedError) as exc:
            await gl_service.create_journal_entry(
                journal(ledger, [("1110", "100.00", "0"), ("4100", "0", "99.00")]),
                created_by="clerk",
            )
        assert exc.value.total_debit == Decimal("100.00")
        assert exc.value.total_credit == Decimal("99.00")
        assert await count(db, GLTransaction) == 0
        assert await count(db, GLEntry) == 0

    async def test_55_one_cent_difference_accepted(self, gl_service, ledger):
        txn = await gl_service.create_journal_entry(
            journal(ledger, [("1110", "100.00", "0"), ("4100", "0", "99.99")]),
            created_by="clerk",
        )
        assert txn.status == TransactionStatus.DRAFT

    async def test_56_summary_account_rejected(self, gl_service, ledger):
        with pytest.raises(ConflictError) as exc:
            await gl_service.create_journal_entry(
                journal(ledger, [("1000", "10.00", "0"), ("4100", "0", "10.00")]),
                created_by="clerk",
            )
        assert "summary account 1000" in exc.value.message

    async def test_57_calendar_fiscal_period(self, gl_service, ledger):
        txn = await gl_service.create_journal_entry(
            journal(ledger, RECEIPT, transaction_date="2026-02-15"), created_by="clerk"
        )
        assert (txn.fiscal_year, txn.period) == (2026, 2)
        assert txn.posting_date == date(2026, 2, 15)

    async def test_58_entity_fiscal_year_end_drives_period(
        self, org_service, coa_service, gl_service
    ):
        from ipsas_ledger.models.enums import AccountType
        from ipsas_ledger.schemas import AccountCreate

        state = await org_service.create_entity(EntityCreate(
            code="STATE", name="State Agency", entity_type=EntityType.AGENCY,
            fiscal_year_end="06-30",
        ))
        fund = await org_service.create_fund(FundCreate(
            code="GF", name="General Fund", fund_type=FundType.GENERAL, entity_id=state.id,
        ))
        ids = {}
        for code, account_type in (("1110", AccountType.ASSET), ("4100", AccountType.REVENUE)):
            acct = await coa_service.create_account(AccountCreate(
                code=code, name=f"Account {code}", account_type=account_type,
                fund_id=fund.id, entity_id=state.id,
            ))
            ids[code] = acct.id
        ledger = {"entity_id": state.id, "fund_id": fund.id, "accounts": ids}

        august = await gl_service.create_journal_entry(
            journal(ledger, RECEIPT, transaction_date="2025-08-10"), created_by="clerk"
        )
        assert (august.fiscal_year, august.period) == (2026, 2)

        march = await gl_service.create_journal_entry(
            journal(ledger, RECEIPT, transaction_date="2026-03-31"), created_by="clerk"
        )
        assert (march.fiscal_year, march.period) == (2026, 9)

    async def test_59_generated_number_format(self, gl_service, ledger):
        txn = await gl_service.create_journal_entry(
            journal(ledger, RECEIPT, transaction_date="2026-07-04"), created_by="clerk"
        )
        assert txn.transaction_number.startswith("GL2607")
        suffix = txn.transaction_number[6:]
        assert len(suffix) == 6
        assert suffix.isalnum() and suffix.upper() == suffix

    async def test_60_generate_transaction_number_helper(self):
        number = generate_transaction_number("GL", 2031, 11)
        assert number[:6] == "GL3111"
        assert len(number) == 12

    async def test_61_explicit_number_kept_and_unique(self, gl_service, ledger):
        txn = await gl_service.create_journal_entry(
            journal(ledger, RECEIPT, transaction_number="JE-0001"), created_by="clerk"
        )
        assert txn.transaction_number == "JE-0001"
        with pytest.raises(DuplicateKeyError):
            await gl_service.create_journal_entry(
                journal(ledger, RECEIPT, transaction_number="JE-0001"), created_by="clerk"
            )

    async def test_62_fund_of_other_entity_rejected(self, org_service, gl_service, ledger):
        county = await org_service.create_entity(EntityCreate(
            code="COUNTY", name="Shelby County", entity_type=EntityType.GOVERNMENT,
        ))
        with pytest.raises(InvalidInputError):
            await gl_service.create_journal_entry(
                journal(ledger, RECEIPT, entity_id=county.id), created_by="clerk"
            )

    async def test_63_line_tags_persisted(self, gl_service, ledger):
        data = journal(ledger, RECEIPT)
        data.entries[0].cost_center = "CC10"
        data.entries[0].department_code = "FIN"
        data.entries[0].description = "Deposit"
        txn = await gl_service.create_journal_entry(data, created_by="clerk")
        first = txn.entries[0]
        assert (first.cost_center, first.department_code, first.description) == ("CC10", "FIN", "Deposit")


class TestApproveAndPost:

    async def test_64_approve_draft(self, gl_service, ledger):
        txn = await gl_service.create_journal_entry(journal(ledger, RECEIPT), created_by="clerk")
        approved = await gl_service.approve_transaction(txn.id, "supervisor")
        assert approved.status == TransactionStatus.APPROVED
        assert approved.approved_by == "supervisor"
        assert approved.approved_at is not None

    async def test_65_approve_twice_rejected(self, gl_service, ledger):
        txn = await gl_service.create_journal_entry(journal(ledger, RECEIPT), created_by="clerk")
        txn_id = txn.id
        await gl_service.approve_transaction(txn_id, "supervisor")
        with pytest.raises(InvalidStateError):
            await gl_service.approve_transaction(txn_id, "supervisor")

    async def test_66_approve_unknown_not_found(self, gl_service, ledger):
        with pytest.raises(NotFoundError):
            await gl_service.approve_transaction(uuid.uuid4(), "supervisor")

    async def test_67_post_draft_rejected(self, gl_service, ledger):
        txn = await gl_service.create_journal_entry(journal(ledger, RECEIPT), created_by="clerk")
        with pytest.raises(InvalidStateError):
            await gl_service.post_transaction(txn.id, "controller")

    async def test_68_approve_then_post(self, gl_service, ledger, audit):
        txn = await gl_service.create_journal_entry(journal(ledger, RECEIPT), created_by="clerk")
        await gl_service.approve_transaction(txn.id, "supervisor")
        posted = await gl_service.post_transaction(txn.id, "controller")
        assert posted.status == TransactionStatus.POSTED
        assert posted.posted_by == "controller"
        assert posted.posted_at is not None
        assert audit.actions()[-3:] == [
            "gl.transaction.create", "gl.transaction.approve", "gl.transaction.post",
        ]

    async def test_69_post_twice_rejected(self, gl_service, posted_txn_id):
        with pytest.raises(InvalidStateError):
            await gl_service.post_transaction(posted_txn_id, "controller")

    async def test_70_post_with_account_deactivated_after_approval(
        self, gl_service, coa_service, ledger
    ):
        txn = await gl_service.create_journal_entry(
            journal(ledger, [("5100", "2500.00", "0"), ("2100", "0", "2500.00")]),
            created_by="clerk",
        )
        txn_id = txn.id
        await gl_service.approve_transaction(txn_id, "supervisor")
        await coa_service.deactivate_account(ledger["accounts"]["5100"])

        with pytest.raises(ConflictError) as exc:
            await gl_service.post_transaction(txn_id, "controller")
        assert "5100" in exc.value.message
        assert (await gl_service.get_transaction(txn_id)).status == TransactionStatus.APPROVED

    async def test_71_post_unbalanced_approved_rejected(self, gl_service, ledger, db):
        txn = await gl_service.create_journal_entry(journal(ledger, RECEIPT), created_by="clerk")
        txn_id = txn.id
        await gl_service.approve_transaction(txn_id, "supervisor")

        # Tamper with a stored line so the approved transaction no longer balances
        async with atomic(db):
            entry = (await db.execute(
                select(GLEntry).where(GLEntry.transaction_id == txn_id, GLEntry.line_number == 2)
            )).scalar_one()
            entry.credit_amount = Decimal("149000.00")

        with pytest.raises(InvalidStateError):
            await gl_service.post_transaction(txn_id, "controller")

    async def test_72_approve_unbalanced_draft_rejected(self, gl_service, ledger, db):
        txn = await gl_service.create_journal_entry(journal(ledger, RECEIPT), created_by="clerk")
        txn_id = txn.id
        async with atomic(db):
            entry = (await db.execute(
                select(GLEntry).where(GLEntry.transaction_id == txn_id, GLEntry.line_number == 1)
            )).scalar_one()
            entry.debit_amount = Decimal("150000.50")

        with pytest.raises(UnbalancedError):
            await gl_service.approve_transaction(txn_id, "supervisor")
        assert (await gl_service.get_transaction(txn_id)).status == TransactionStatus.DRAFT


class TestStaleReads:
    """A second session holding an old copy of the row must not act on it."""

    async def test_167_approve_from_stale_session_rejected(
        self, gl_service, ledger, session_factory
    ):
        txn = await gl_service.create_journal_entry(journal(ledger, RECEIPT), created_by="clerk")
        txn_id = txn.id

        async with session_factory() as other_db:
            other = GeneralLedgerService(other_db)
            stale = await other.get_transaction(txn_id)
            assert stale.status == TransactionStatus.DRAFT

            await gl_service.approve_transaction(txn_id, "supervisor")

            with pytest.raises(InvalidStateError):
                await other.approve_transaction(txn_id, "second-approver")

        approved = await gl_service.get_transaction(txn_id)
        assert approved.status == TransactionStatus.APPROVED
        assert approved.approved_by == "supervisor"

    async def test_168_post_from_stale_session_sees_deactivated_account(
        self, gl_service, coa_service, ledger, session_factory
    ):
        txn = await gl_service.create_journal_entry(
            journal(ledger, [("5100", "2500.00", "0"), ("2100", "0", "2500.00")]),
            created_by="clerk",
        )
        txn_id = txn.id
        await gl_service.approve_transaction(txn_id, "supervisor")

        async with session_factory() as other_db:
            other = GeneralLedgerService(other_db)
            stale = await other.get_transaction(txn_id)
            assert all(e.account.is_active for e in stale.entries)

            await coa_service.deactivate_account(ledger["accounts"]["5100"])

            with pytest.raises(ConflictError) as exc:
                await other.post_transaction(txn_id, "controller")
            assert exc.value.message == "Account is not active: 5100"

        assert (await gl_service.get_transaction(txn_id)).status == TransactionStatus.APPROVED

    async def test_169_post_from_stale_session_after_post_rejected(
        self, gl_service, ledger, session_factory
    ):
        txn = await gl_service.create_journal_entry(journal(ledger, RECEIPT), created_by="clerk")
        txn_id = txn.id
        await gl_service.approve_transaction(txn_id, "supervisor")

        async with session_factory() as other_db:
            other = GeneralLedgerService(other_db)
            assert (await other.get_transaction(txn_id)).status == TransactionStatus.APPROVED

            await gl_service.post_transaction(txn_id, "controller")

            with pytest.raises(InvalidStateError):
                await other.post_transaction(txn_id, "second-controller")

        posted = await gl_service.get_transaction(txn_id)
        assert posted.posted_by == "controller"


class TestQueries:

    async def test_73_get_transaction_loads_entries_and_accounts(self, gl_service, posted_txn_id):
        txn = await gl_service.get_transaction(posted_txn_id)
        assert [e.account.code for e in txn.entries] == ["1110", "4100"]

    async def test_74_get_unknown_transaction_not_found(self, gl_service):
        with pytest.raises(NotFoundError):
            await gl_service.get_transaction(uuid.uuid4())

    async def test_75_list_filters_by_status_and_date(self, gl_service, ledger, posted_txn_id):
        await gl_service.create_journal_entry(
            journal(ledger, RECEIPT, transaction_date="2026-03-01"), created_by="clerk"
        )
        posted = await gl_service.list_transactions(
            ledger["entity_id"], PageParams.normalize(), status=TransactionStatus.POSTED
        )
        assert [t.id for t in posted.items] == [posted_txn_id]

        march = await gl_service.list_transactions(
            ledger["entity_id"], PageParams.normalize(),
            start_date=date(2026, 3, 1), end_date=date(2026, 3, 31),
        )
        assert march.total_items == 1
        assert march.items[0].transaction_date == date(2026, 3, 1)

    async def test_76_list_paginates(self, gl_service, ledger):
        for day in range(1, 6):
            await gl_service.create_journal_entry(
                journal(ledger, RECEIPT, transaction_date=f"2026-04-0{day}"), created_by="clerk"
            )
        page = await gl_service.list_transactions(
            ledger["entity_id"],
            PageParams.normalize(page=2, limit=2, sort_by="transactionDate", sort_order="asc"),
            fund_id=ledger["fund_id"],
        )
        assert [t.transaction_date.day for t in page.items] == [3, 4]
        assert page.pagination == {
            "currentPage": 2,
            "totalPages": 3,
            "totalItems": 5,
            "itemsPerPage": 2,
            "hasNextPage": True,
            "hasPreviousPage": True,
        }


class TestUnitOfWork:

    async def test_77_atomic_rolls_back_everything(self, gl_service, ledger, db):
        with pytest.raises(RuntimeError):
            async with atomic(db):
                await gl_service._create_journal_entry(journal(ledger, RECEIPT), "clerk")
                raise RuntimeError("boom")
        assert await count(db, GLTransaction) == 0

    async def test_78_nested_atomic_does_not_commit_early(self, gl_service, ledger, db):
        with pytest.raises(RuntimeError):
            async with atomic(db):
                await gl_service.create_journal_entry(journal(ledger, RECEIPT), "clerk")
                raise RuntimeError("boom")
        assert await count(db, GLTransaction) == 0

    async def test_79_atomic_commits_on_success(self, gl_service, ledger, db, session_factory):
        async with atomic(db):
            await gl_service._create_journal_entry(journal(ledger, RECEIPT), "clerk")
        async with session_factory() as other:
            assert await count(other, GLTransaction) == 1

    async def test_80_failed_create_leaves_no_orphan_entries(self, gl_service, ledger, db):
        await gl_service.create_journal_entry(
            journal(ledger, RECEIPT, transaction_number="JE-1"), created_by="clerk"
        )
        with pytest.raises(DuplicateKeyError):
            await gl_service.create_journal_entry(
                journal(ledger, RECEIPT, transaction_number="JE-1"), created_by="clerk"
            )
        assert await count(db, GLTransaction) == 1
        assert await count(db, GLEntry) == 2
