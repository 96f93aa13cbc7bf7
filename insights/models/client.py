"""
B2B Client Models
=================
Paying API consumers, provisioned by the account-management side.
"""

from sqlalchemy import CheckConstraint, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from insights.models.base import Base, TimestampMixin


class B2BClient(Base, TimestampMixin):
    """
    A B2B client allowed to query anonymized insights.

    Only the SHA-256 digest of the API key is stored.
    """

    __tablename__ = "b2b_clients"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    api_key_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    tier: Mapped[str] = mapped_column(String(50), nullable=False, default="base")
    daily_call_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'suspended', 'revoked')",
            name="ck_b2b_clients_status",
        ),
        Index("idx_b2b_clients_status", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"
