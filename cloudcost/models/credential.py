"""Credential database model."""

from datetime import datetime

from sqlalchemy import Integer, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from cloudcost.core.database import Base
from cloudcost.models.scan import utcnow


class Credential(Base):
    """Encrypted provider credential bundle.

    Only provider, name and created_at are stored in plaintext.
    """

    __tablename__ = "credentials"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    provider: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    ciphertext: Mapped[bytes] = mapped_column(
        LargeBinary,
        nullable=False,
    )
    nonce: Mapped[bytes] = mapped_column(
        LargeBinary,
        nullable=False,
    )
    tag: Mapped[bytes] = mapped_column(
        LargeBinary,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<Credential {self.id} - {self.provider}/{self.name}>"
