"""General Ledger routes -- journal entries and their lifecycle."""
from __future__ import annotations

import uuid
from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

from ipsas_ledger.database import get_db
from ipsas_ledger.middleware.auth import APPROVERS, MAINTAINERS, get_current_user, require_role
from ipsas_ledger.models.enums import TransactionStatus
from ipsas_ledger.models.gl import GLEntry, GLTransaction
from ipsas_ledger.schemas import JournalEntryCreate, ReverseRequest
from ipsas_ledger.services.audit_service import AuditWriter, get_audit_writer
from ipsas_ledger.services.general_ledger import GeneralLedgerService
from ipsas_ledger.services.pagination import PageParams

router = APIRouter(prefix="/api/gl", tags=["general-ledger"])


def get_service(
    db: AsyncSession = Depends(get_db),
    audit: AuditWriter = Depends(get_audit_writer),
) -> GeneralLedgerService:
    return GeneralLedgerService(db, audit)


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def entry_to_dict(l: GLEntry) -> dict[str, Any]:
    item = {
        "id": str(l.id),
        "line_number": l.line_number,
        "account_id": str(l.account_id),
        "debit_amount": str(l.debit_amount),
        "credit_amount": str(l.credit_amount),
        "description": l.description,
        "cost_center": l.cost_center,
        "project_code": l.project_code,
        "department_code": l.department_code,
    }
    # Account is only present when the query asked for it
    if "account" not in inspect(l).unloaded and l.account is not None:
        item["account_code"] = l.account.code
        item["account_name"] = l.account.name
    return item


def transaction_to_dict(t: GLTransaction, include_entries: bool = True) -> dict[str, Any]:
    item = {
        "id": str(t.id),
        "transaction_number": t.transaction_number,
        "transaction_date": str(t.transaction_date),
        "posting_date": str(t.posting_date),
        "description": t.description,
        "reference_number": t.reference_number,
        "source_module": t.source_module,
        "source_document_id": str(t.source_document_id) if t.source_document_id else None,
        "fund_id": str(t.fund_id),
        "entity_id": str(t.entity_id),
        "fiscal_year": t.fiscal_year,
        "period": t.period,
        "status": t.status,
        "total_debit": str(t.total_debit),
        "total_credit": str(t.total_credit),
        "created_by": t.created_by,
        "approved_by": t.approved_by,
        "approved_at": _iso(t.approved_at),
        "posted_by": t.posted_by,
        "posted_at": _iso(t.posted_at),
        "reversed_by": t.reversed_by,
        "reversed_at": _iso(t.reversed_at),
        "reversal_reason": t.reversal_reason,
        "reversed_by_transaction_id": (
            str(t.reversed_by_transaction_id) if t.reversed_by_transaction_id else None
        ),
        "created_at": _iso(t.created_at),
        "line_count": len(t.entries),
    }
    if include_entries:
        item["entries"] = [entry_to_dict(l) for l in t.entries]
    return item


# ---------------------------------------------------------------------------
# JOURNAL ENTRIES
# ---------------------------------------------------------------------------

@router.get("/transactions")
async def list_transactions(
    entity_id: uuid.UUID = Query(...),
    fund_id: uuid.UUID | None = Query(None),
    txn_status: TransactionStatus | None = Query(None, alias="status"),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    page: int | None = Query(None),
    limit: int | None = Query(None),
    sort_by: str | None = Query(None),
    sort_order: str | None = Query(None),
    service: GeneralLedgerService = Depends(get_service),
    _user: dict = Depends(get_current_user),
):
    params = PageParams.normalize(page, limit, sort_by, sort_order)
    result = await service.list_transactions(
        entity_id,
        params,
        fund_id=fund_id,
        status=txn_status,
        start_date=start_date,
        end_date=end_date,
    )
    return result.to_dict(lambda t: transaction_to_dict(t, include_entries=False))


@router.get("/transactions/{transaction_id}")
async def get_transaction(
    transaction_id: uuid.UUID,
    service: GeneralLedgerService = Depends(get_service),
    _user: dict = Depends(get_current_user),
):
    return transaction_to_dict(await service.get_transaction(transaction_id))


@router.post("/transactions", status_code=201)
async def create_journal_entry(
    body: JournalEntryCreate,
    service: GeneralLedgerService = Depends(get_service),
    user: dict = Depends(require_role(*MAINTAINERS)),
):
    txn = await service.create_journal_entry(body, created_by=user["user_id"])
    return transaction_to_dict(txn)


@router.post("/transactions/{transaction_id}/approve")
async def approve_transaction(
    transaction_id: uuid.UUID,
    service: GeneralLedgerService = Depends(get_service),
    user: dict = Depends(require_role(*APPROVERS)),
):
    txn = await service.approve_transaction(transaction_id, approved_by=user["user_id"])
    return transaction_to_dict(txn)


@router.post("/transactions/{transaction_id}/post")
async def post_transaction(
    transaction_id: uuid.UUID,
    service: GeneralLedgerService = Depends(get_service),
    user: dict = Depends(require_role(*APPROVERS)),
):
    txn = await service.post_transaction(transaction_id, posted_by=user["user_id"])
    return transaction_to_dict(txn)


@router.post("/transactions/{transaction_id}/reverse")
async def reverse_transaction(
    transaction_id: uuid.UUID,
    body: ReverseRequest,
    service: GeneralLedgerService = Depends(get_service),
    user: dict = Depends(require_role(*APPROVERS)),
):
    result = await service.reverse_transaction(
        transaction_id, reversed_by=user["user_id"], reason=body.reason
    )
    return {
        "original": transaction_to_dict(result.original),
        "reversal": transaction_to_dict(result.reversal),
    }
