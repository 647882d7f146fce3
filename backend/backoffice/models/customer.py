from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.core.db import Base


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(primary_key=True)
    first_name: Mapped[str] = mapped_column(String(100), default="")
    last_name: Mapped[str] = mapped_column(String(100), default="")
    mobile_e164: Mapped[str | None] = mapped_column(String(32), nullable=True)

    stripe_customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    @property
    def display_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip() or "Guest"
