"""Metadata for patient files held in the content-addressed store."""

from sqlalchemy import BigInteger, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from consent_gate.db.base import Base, TimestampMixin


class MedicalFile(Base, TimestampMixin):
    """File metadata.

    Bytes live in the storage network under ``content_hash``; this service
    only needs the category for scope checks and the hash as a handle.
    """

    __tablename__ = "medical_files"

    patient_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    content_hash: Mapped[str] = mapped_column(String(130), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    is_encrypted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<MedicalFile {self.name} ({self.category})>"
