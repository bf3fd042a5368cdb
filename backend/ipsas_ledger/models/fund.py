"""Fund model: self-balancing fiscal subdivisions of an entity."""
from __future__ import annotations

import decimal
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ipsas_ledger.database import Base
from ipsas_ledger.models.base import TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from ipsas_ledger.models.org import Entity


class Fund(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A fund (general, special revenue, capital projects, ...) owned by one entity."""
    __tablename__ = "funds"
    __table_args__ = (
        UniqueConstraint("code", "entity_id", name="uq_funds_code_entity"),
    )

    code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    fund_type: Mapped[str] = mapped_column(String(30), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("entities.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    description: Mapped[str | None] = mapped_column(Text)
    budget_authority: Mapped[decimal.Decimal | None] = mapped_column(Numeric(15, 2))
    carry_forward_allowed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # ------ relationships ------
    entity: Mapped[Entity] = relationship(
        "Entity",
        back_populates="funds",
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<Fund {self.code!r} {self.name!r} type={self.fund_type!r}>"
