"""Request payloads accepted by the ledger services and API routes.

Field-level shape checks (lengths, formats, non-negative amounts) live here.
Ledger rules that depend on stored state or span several lines (balance,
debit/credit exclusivity, account validity) are enforced by the services so
that they surface as ledger errors.
"""
from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from ipsas_ledger.models.enums import (
    AccountType,
    EntityType,
    FundType,
    NormalBalance,
    SourceModule,
)

CODE_PATTERN = r"^[A-Za-z0-9]+$"
ACCOUNT_CODE_PATTERN = r"^[A-Za-z0-9.-]+$"
FISCAL_YEAR_END_PATTERN = r"^(0[1-9]|1[0-2])-(0[1-9]|[12][0-9]|3[01])$"
CURRENCY_PATTERN = r"^[A-Z]{3}$"


# ---------------------------------------------------------------------------
# Organization
# ---------------------------------------------------------------------------

class EntityCreate(BaseModel):
    code: str = Field(min_length=2, max_length=20, pattern=CODE_PATTERN)
    name: str = Field(min_length=3, max_length=255)
    entity_type: EntityType
    parent_entity_id: uuid.UUID | None = None
    fiscal_year_end: str | None = Field(default=None, pattern=FISCAL_YEAR_END_PATTERN)
    currency_code: str = Field(default="USD", pattern=CURRENCY_PATTERN)
    description: str | None = Field(default=None, max_length=1000)


class EntityUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=3, max_length=255)
    entity_type: EntityType | None = None
    parent_entity_id: uuid.UUID | None = None
    fiscal_year_end: str | None = Field(default=None, pattern=FISCAL_YEAR_END_PATTERN)
    currency_code: str | None = Field(default=None, pattern=CURRENCY_PATTERN)
    description: str | None = Field(default=None, max_length=1000)


class FundCreate(BaseModel):
    code: str = Field(min_length=2, max_length=20, pattern=CODE_PATTERN)
    name: str = Field(min_length=3, max_length=255)
    fund_type: FundType
    entity_id: uuid.UUID | None = None
    description: str | None = Field(default=None, max_length=1000)
    budget_authority: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    carry_forward_allowed: bool = False


# ---------------------------------------------------------------------------
# Chart of accounts
# ---------------------------------------------------------------------------

class AccountCreate(BaseModel):
    code: str = Field(min_length=1, max_length=20, pattern=ACCOUNT_CODE_PATTERN)
    name: str = Field(min_length=1, max_length=255)
    account_type: AccountType
    fund_id: uuid.UUID
    entity_id: uuid.UUID
    parent_account_id: uuid.UUID | None = None
    normal_balance: NormalBalance | None = None
    is_detail_account: bool = True
    budget_account: bool = False
    requires_fund_accounting: bool = True
    description: str | None = Field(default=None, max_length=1000)


class AccountUpdate(BaseModel):
    """Partial update.  Sending ``parent_account_id: null`` makes the account a root."""

    code: str | None = Field(default=None, min_length=1, max_length=20, pattern=ACCOUNT_CODE_PATTERN)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    parent_account_id: uuid.UUID | None = None
    is_detail_account: bool | None = None
    budget_account: bool | None = None
    requires_fund_accounting: bool | None = None
    description: str | None = Field(default=None, max_length=1000)


# ---------------------------------------------------------------------------
# Journal entries
# ---------------------------------------------------------------------------

class JournalLineIn(BaseModel):
    account_id: uuid.UUID
    debit_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    credit_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    description: str | None = Field(default=None, max_length=500)
    cost_center: str | None = Field(default=None, max_length=20)
    project_code: str | None = Field(default=None, max_length=20)
    department_code: str | None = Field(default=None, max_length=20)


class JournalEntryCreate(BaseModel):
    transaction_date: date
    posting_date: date | None = None
    description: str = Field(min_length=5, max_length=1000)
    reference_number: str | None = Field(default=None, max_length=100)
    transaction_number: str | None = Field(default=None, min_length=1, max_length=50)
    source_module: SourceModule = SourceModule.MANUAL
    source_document_id: uuid.UUID | None = None
    fund_id: uuid.UUID
    entity_id: uuid.UUID
    entries: list[JournalLineIn]


class ReverseRequest(BaseModel):
    reason: str = Field(default="", max_length=1000)
