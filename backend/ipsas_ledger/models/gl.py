"""General Ledger models: chart of accounts, GL transactions and their entries."""
from __future__ import annotations

import datetime
import decimal
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ipsas_ledger.database import Base
from ipsas_ledger.models.base import TimestampMixin, UUIDPrimaryKeyMixin
from ipsas_ledger.models.enums import TransactionStatus

if TYPE_CHECKING:
    from ipsas_ledger.models.fund import Fund
    from ipsas_ledger.models.org import Entity


class Account(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Chart of Accounts node, scoped to one fund of one entity."""
    __tablename__ = "chart_of_accounts"
    __table_args__ = (
        UniqueConstraint(
            "code", "fund_id", "entity_id", name="uq_accounts_code_fund_entity"
        ),
        CheckConstraint("level BETWEEN 1 AND 10", name="ck_accounts_level"),
        Index("ix_accounts_entity_fund", "entity_id", "fund_id"),
    )

    code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_type: Mapped[str] = mapped_column(String(20), nullable=False)
    parent_account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("chart_of_accounts.id", ondelete="RESTRICT"),
        index=True,
    )
    fund_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("funds.id", ondelete="RESTRICT"),
        nullable=False,
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("entities.id", ondelete="RESTRICT"),
        nullable=False,
    )
    normal_balance: Mapped[str] = mapped_column(String(10), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_detail_account: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    budget_account: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requires_fund_accounting: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # ------ relationships ------
    fund: Mapped[Fund] = relationship("Fund", lazy="raise")
    entity: Mapped[Entity] = relationship("Entity", lazy="raise")

    def __repr__(self) -> str:
        return f"<Account {self.code!r} {self.name!r} level={self.level}>"


class GLTransaction(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A journal entry header owning two or more balanced lines."""
    __tablename__ = "gl_transactions"
    __table_args__ = (
        CheckConstraint("period BETWEEN 1 AND 12", name="ck_gl_transactions_period"),
        CheckConstraint(
            "total_debit >= 0 AND total_credit >= 0",
            name="ck_gl_transactions_totals",
        ),
        Index("ix_gl_transactions_fiscal", "fiscal_year", "period"),
        Index("ix_gl_transactions_entity_fund", "entity_id", "fund_id"),
    )

    transaction_number: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False
    )
    transaction_date: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
    posting_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reference_number: Mapped[str | None] = mapped_column(String(100))
    source_module: Mapped[str] = mapped_column(
        String(50), nullable=False, default="MANUAL"
    )
    source_document_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True))
    fund_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("funds.id", ondelete="RESTRICT"),
        nullable=False,
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("entities.id", ondelete="RESTRICT"),
        nullable=False,
    )
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=TransactionStatus.DRAFT.value,
        index=True,
    )
    total_debit: Mapped[decimal.Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=decimal.Decimal("0.00")
    )
    total_credit: Mapped[decimal.Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=decimal.Decimal("0.00")
    )
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    approved_by: Mapped[str | None] = mapped_column(String(100))
    approved_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True))
    posted_by: Mapped[str | None] = mapped_column(String(100))
    posted_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True))
    reversed_by: Mapped[str | None] = mapped_column(String(100))
    reversed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True))
    reversal_reason: Mapped[str | None] = mapped_column(Text)
    reversed_by_transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("gl_transactions.id"),
    )

    # ------ relationships ------
    entries: Mapped[list[GLEntry]] = relationship(
        "GLEntry",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="GLEntry.line_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<GLTransaction {self.transaction_number!r} status={self.status!r}>"


class GLEntry(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Individual debit or credit line within a GL transaction."""
    __tablename__ = "gl_entries"
    __table_args__ = (
        UniqueConstraint("transaction_id", "line_number", name="uq_gl_entries_line"),
        CheckConstraint(
            "(debit_amount > 0 AND credit_amount = 0) "
            "OR (credit_amount > 0 AND debit_amount = 0)",
            name="ck_gl_entries_one_side",
        ),
        CheckConstraint("line_number >= 1", name="ck_gl_entries_line_number"),
    )

    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("gl_transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("chart_of_accounts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    debit_amount: Mapped[decimal.Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=decimal.Decimal("0.00")
    )
    credit_amount: Mapped[decimal.Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=decimal.Decimal("0.00")
    )
    description: Mapped[str | None] = mapped_column(Text)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    cost_center: Mapped[str | None] = mapped_column(String(20))
    project_code: Mapped[str | None] = mapped_column(String(20))
    department_code: Mapped[str | None] = mapped_column(String(20))

    # ------ relationships ------
    transaction: Mapped[GLTransaction] = relationship(
        "GLTransaction",
        back_populates="entries",
        lazy="raise",
    )
    account: Mapped[Account] = relationship(
        "Account",
        lazy="raise",
    )

    def __repr__(self) -> str:
        return (
            f"<GLEntry #{self.line_number} "
            f"debit={self.debit_amount} credit={self.credit_amount}>"
        )
