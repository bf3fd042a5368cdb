"""Enumerations shared by models, services and API schemas.

Values are stored as plain strings; the enums are ``str`` subclasses so they
compare equal to the stored column values.
"""
from __future__ import annotations

import enum


class EntityType(str, enum.Enum):
    GOVERNMENT = "GOVERNMENT"
    AGENCY = "AGENCY"
    DEPARTMENT = "DEPARTMENT"
    SUBSIDIARY = "SUBSIDIARY"


class FundType(str, enum.Enum):
    GENERAL = "GENERAL"
    SPECIAL_REVENUE = "SPECIAL_REVENUE"
    CAPITAL_PROJECTS = "CAPITAL_PROJECTS"
    DEBT_SERVICE = "DEBT_SERVICE"
    ENTERPRISE = "ENTERPRISE"
    INTERNAL_SERVICE = "INTERNAL_SERVICE"


class AccountType(str, enum.Enum):
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    NET_POSITION = "NET_POSITION"
    REVENUE = "REVENUE"
    EXPENSE = "EXPENSE"


class NormalBalance(str, enum.Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class TransactionStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"  # reserved for an external submission workflow
    APPROVED = "APPROVED"
    POSTED = "POSTED"
    REVERSED = "REVERSED"


class SourceModule(str, enum.Enum):
    REVENUE = "REVENUE"
    BUDGET = "BUDGET"
    EXPENDITURE = "EXPENDITURE"
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    MANUAL = "MANUAL"
    SYSTEM = "SYSTEM"


NORMAL_BALANCE_BY_TYPE: dict[AccountType, NormalBalance] = {
    AccountType.ASSET: NormalBalance.DEBIT,
    AccountType.EXPENSE: NormalBalance.DEBIT,
    AccountType.LIABILITY: NormalBalance.CREDIT,
    AccountType.NET_POSITION: NormalBalance.CREDIT,
    AccountType.REVENUE: NormalBalance.CREDIT,
}
