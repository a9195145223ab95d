"""Upload intent issuance.

Mints presigned URLs so the mobile client can send artifacts straight to
object storage. Nothing is recorded here; the record is created later by
the ingest recorder when the client confirms.
"""

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from testintake.errors import Forbidden
from testintake.schemas.test_result import CompletedPart, DeclaredFile, UploadUrl
from testintake.services.ingest import ensure_test_id_available
from testintake.services.ownership import UploadOwnership
from testintake.services.storage import StorageGateway, make_object_key

logger = logging.getLogger(__name__)


class UploadIntentCoordinator:
    def __init__(self, db: AsyncSession, storage: StorageGateway) -> None:
        self.db = db
        self.storage = storage

    async def request_upload_urls(
        self,
        test_id: str,
        declared_files: list[DeclaredFile],
        ownership: UploadOwnership,
    ) -> dict[str, UploadUrl]:
        """Mint one presigned PUT per declared file.

        Either every URL is minted or the whole batch fails.
        """
        await ensure_test_id_available(self.db, test_id)

        keys = [make_object_key(ownership.namespace, f.file_name) for f in declared_files]
        urls = await asyncio.gather(
            *(
                self.storage.presign_upload(key, f.content_type)
                for key, f in zip(keys, declared_files)
            )
        )

        logger.info(
            "Issued %d upload URL(s) for test %s under %s",
            len(urls),
            test_id,
            ownership.key_prefix,
        )
        return {
            f.file_type.value: UploadUrl(upload_url=url, key=key, file_type=f.file_type)
            for f, key, url in zip(declared_files, keys, urls)
        }

    # ── Multipart ────────────────────────────────────────────────────

    def _ensure_owned(self, key: str, ownership: UploadOwnership) -> None:
        if not ownership.owns_key(key):
            raise Forbidden("Storage key is outside the caller's upload namespace")

    async def initiate_multipart(
        self, test_id: str, declared_file: DeclaredFile, ownership: UploadOwnership
    ) -> tuple[str, str]:
        """Start a multipart upload and return ``(key, upload_id)``."""
        await ensure_test_id_available(self.db, test_id)

        key = make_object_key(ownership.namespace, declared_file.file_name)
        upload_id = await self.storage.create_multipart_upload(
            key, declared_file.content_type
        )
        logger.info("Started multipart upload for test %s at %s", test_id, key)
        return key, upload_id

    async def multipart_part_urls(
        self,
        key: str,
        upload_id: str,
        part_numbers: list[int],
        ownership: UploadOwnership,
    ) -> dict[int, str]:
        self._ensure_owned(key, ownership)
        numbers = sorted(set(part_numbers))
        urls = await asyncio.gather(
            *(self.storage.presign_upload_part(key, upload_id, n) for n in numbers)
        )
        return dict(zip(numbers, urls))

    async def complete_multipart(
        self,
        key: str,
        upload_id: str,
        parts: list[CompletedPart],
        ownership: UploadOwnership,
    ) -> None:
        self._ensure_owned(key, ownership)
        await self.storage.complete_multipart_upload(
            key,
            upload_id,
            [{"ETag": p.etag, "PartNumber": p.part_number} for p in parts],
        )
        logger.info("Completed multipart upload %s (%d parts)", key, len(parts))

    async def abort_multipart(
        self, key: str, upload_id: str, ownership: UploadOwnership
    ) -> None:
        self._ensure_owned(key, ownership)
        await self.storage.abort_multipart_upload(key, upload_id)
        logger.info("Aborted multipart upload %s", key)
