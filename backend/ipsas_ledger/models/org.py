"""Organizational structure: reporting entities (governments, agencies, departments)."""
from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ipsas_ledger.database import Base
from ipsas_ledger.models.base import TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from ipsas_ledger.models.fund import Fund


class Entity(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """An organizational unit owning funds and charts of accounts."""
    __tablename__ = "entities"

    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    parent_entity_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("entities.id", ondelete="RESTRICT"),
    )
    fiscal_year_end: Mapped[str] = mapped_column(
        String(5), nullable=False, default="12-31"
    )
    currency_code: Mapped[str] = mapped_column(
        String(3), nullable=False, default="USD"
    )
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # ------ relationships ------
    funds: Mapped[list[Fund]] = relationship(
        "Fund",
        back_populates="entity",
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<Entity {self.code!r} {self.name!r}>"
