"""File store backed by the medical file metadata table."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from consent_gate.models.medical_file import MedicalFile
from consent_gate.services.collaborators import FileStore, ResolvedFile

logger = logging.getLogger(__name__)


class DatabaseFileStore(FileStore):
    """Resolves file ids to metadata and a content handle.

    The handle is the content hash; fetching bytes from the storage network
    is left to the client holding an active session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def resolve(self, file_id: str) -> ResolvedFile | None:
        medical_file = await self.session.get(MedicalFile, file_id)
        if medical_file is None:
            logger.debug(f"File {file_id} not found in store")
            return None

        return ResolvedFile(
            file_id=medical_file.id,
            patient_id=medical_file.patient_id,
            category=medical_file.category,
            handle_ref=medical_file.content_hash,
            is_encrypted=medical_file.is_encrypted,
        )

    async def register(
        self,
        patient_id: str,
        category: str,
        content_hash: str,
        name: str,
        mime_type: str | None = None,
        size_bytes: int | None = None,
        is_encrypted: bool = True,
    ) -> MedicalFile:
        """Record metadata for an uploaded file."""
        medical_file = MedicalFile(
            patient_id=patient_id,
            category=category,
            content_hash=content_hash,
            name=name,
            mime_type=mime_type,
            size_bytes=size_bytes,
            is_encrypted=is_encrypted,
        )
        self.session.add(medical_file)
        await self.session.commit()
        await self.session.refresh(medical_file)
        return medical_file
