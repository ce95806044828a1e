"""Service for uploading, chaining, verifying and deleting documents."""
import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from vitalai.database.models import DocumentVerification
from vitalai.exceptions import DocumentNotFound, StorageUnavailable
from vitalai.services.blob_storage import BlobStorage
from vitalai.services.document_chain import (
    SENTINEL_HASH,
    ChainWalk,
    append_block,
    hash_document,
    sanitize_filename,
    walk_chain,
)

logger = logging.getLogger(__name__)


@dataclass
class DocumentSummary:
    """A stored document as shown on the documents page."""
    name: str
    url: str
    size: int
    content_type: str
    stored: bool
    record: Optional[DocumentVerification]


@dataclass
class _StoredBytes:
    content: bytes
    content_type: str


class DocumentService:
    """
    Service for the document integrity chain.

    Uploads are serialized within the process so that reading the chain tail
    and inserting the new block cannot interleave. Separate processes sharing
    one database can still fork the chain; ``walk`` reports such forks.

    Records are never removed on re-upload: each upload appends a block, and
    the latest block for an owner and name is the current one. Records are
    removed only by ``delete_document``.
    """

    def __init__(self, blob_storage: BlobStorage, session_factory: async_sessionmaker, timeout: float = 10.0):
        self.blob_storage = blob_storage
        self.session_factory = session_factory
        self.timeout = timeout
        self._chain_lock = asyncio.Lock()

    async def _db(self, operation, description: str):
        try:
            return await asyncio.wait_for(operation(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StorageUnavailable(f"Database timed out while trying to {description}") from e
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Failed to {description}: {str(e)}") from e

    async def upload_and_chain(
        self,
        filename: str,
        content: bytes,
        owner: str,
        content_type: str = "",
    ) -> DocumentVerification:
        """
        Store a document and append its block to the chain.

        Args:
            filename: Original filename, sanitized into the storage key
            content: Full document bytes
            owner: Identity of the uploading user
            content_type: MIME type reported by the client

        Returns:
            The persisted verification record

        Raises:
            ValueError: if the filename sanitizes to nothing
            StorageUnavailable: if either the bytes or the record could not be written
        """
        document_name = sanitize_filename(filename)
        document_hash = hash_document(content)
        descriptor = {"name": filename, "size": len(content), "type": content_type}

        async with self._chain_lock:
            previous_hash = await self._db(self._tail_hash, "read the document chain")
            block = append_block(document_hash, previous_hash, descriptor)

            # Blob calls carry their own timeout, separate from the database's
            previous_bytes = await self._snapshot(document_name)
            if previous_bytes is not None:
                logger.warning(
                    f"Overwriting stored bytes for {document_name}",
                    extra={"document_name": document_name, "owner": owner},
                )
            await self.blob_storage.upload(
                document_name,
                content,
                content_type=content_type,
                metadata={"user_id": owner, "document_hash": document_hash, "block_hash": block.block_hash},
            )

            new_record = DocumentVerification(
                document_name=document_name,
                document_hash=document_hash,
                block_hash=block.block_hash,
                previous_hash=block.previous_hash,
                verification_data=block.to_payload(),
                owner=owner,
                content_type=content_type,
                size=len(content),
            )

            async def _insert():
                async with self.session_factory() as session:
                    async with session.begin():
                        session.add(new_record)
                    return new_record

            try:
                record = await self._db(_insert, "store document verification data")
            except StorageUnavailable:
                await self._restore(document_name, previous_bytes)
                raise

        logger.info(
            "Document uploaded and chained",
            extra={
                "document_name": document_name,
                "owner": owner,
                "document_hash": document_hash,
                "block_hash": record.block_hash,
                "previous_hash": record.previous_hash,
                "size": len(content),
            },
        )
        return record

    async def _tail_hash(self) -> str:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DocumentVerification.block_hash)
                .order_by(DocumentVerification.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none() or SENTINEL_HASH

    async def _snapshot(self, document_name: str) -> Optional[_StoredBytes]:
        """Current bytes under a name, kept so a failed insert can put them back."""
        if not await self.blob_storage.exists(document_name):
            return None
        record = await self.get_record(document_name)
        try:
            content = await self.blob_storage.download(document_name)
        except DocumentNotFound:
            return None
        return _StoredBytes(content=content, content_type=(record.content_type if record else "") or "")

    async def _restore(self, document_name: str, previous: Optional[_StoredBytes]) -> None:
        """
        Undo a byte write whose verification record was not stored.

        If the blob call that wrote the new bytes timed out, its worker thread
        may still finish after this runs; that window is not covered.
        """
        try:
            if previous is None:
                await self.blob_storage.delete(document_name)
            else:
                await self.blob_storage.upload(document_name, previous.content, content_type=previous.content_type)
            logger.warning(
                f"Restored stored bytes for {document_name} after a failed record insert",
                extra={"document_name": document_name},
            )
        except DocumentNotFound:
            pass
        except StorageUnavailable as e:
            logger.error(
                f"Could not restore stored bytes for {document_name}: {str(e)}",
                extra={"document_name": document_name, "error": str(e)},
            )

    async def get_record(self, name: str, owner: Optional[str] = None) -> Optional[DocumentVerification]:
        """Latest verification record for a document name, optionally restricted to one owner."""
        async def _get():
            async with self.session_factory() as session:
                query = select(DocumentVerification).where(DocumentVerification.document_name == name)
                if owner is not None:
                    query = query.where(DocumentVerification.owner == owner)
                result = await session.execute(query.order_by(DocumentVerification.id.desc()).limit(1))
                return result.scalar_one_or_none()

        return await self._db(_get, "fetch document verification data")

    async def verify_document(
        self,
        document: Union[DocumentVerification, str],
        owner: Optional[str] = None,
    ) -> bool:
        """
        Re-hash the stored bytes of a document and compare with its recorded hash.

        Returns False when the record or the bytes are missing, or the stores
        cannot be reached.
        """
        try:
            record = document if isinstance(document, DocumentVerification) else await self.get_record(document, owner)
            if record is None:
                logger.info("No verification record found", extra={"document_name": str(document), "valid": False})
                return False
            content = await self.blob_storage.download(record.document_name)
        except (DocumentNotFound, StorageUnavailable) as e:
            logger.warning(
                f"Document could not be verified: {str(e)}",
                extra={"document_name": str(getattr(document, "document_name", document)), "valid": False},
            )
            return False

        valid = hash_document(content) == record.document_hash
        logger.info(
            "Document verified" if valid else "Document hash mismatch",
            extra={"document_name": record.document_name, "owner": record.owner, "valid": valid},
        )
        return valid

    async def delete_document(self, name: str, owner: str) -> None:
        """
        Delete an owner's verification records for a name, then the stored bytes.

        Only an owner holding a record can delete. The bytes are kept while
        another owner still has a record under the same name. The chain is not
        repaired: the next block keeps pointing at the deleted block's hash.

        Raises:
            DocumentNotFound: if ``owner`` has no record for ``name``
            StorageUnavailable: if the record or the bytes could not be deleted
        """
        async def _delete():
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(DocumentVerification).where(
                            DocumentVerification.document_name == name,
                            DocumentVerification.owner == owner,
                        )
                    )
                    if not result.rowcount:
                        return None
                    remaining = await session.execute(
                        select(func.count())
                        .select_from(DocumentVerification)
                        .where(DocumentVerification.document_name == name)
                    )
                    return remaining.scalar_one()

        remaining = await self._db(_delete, "delete document verification data")
        if remaining is None:
            raise DocumentNotFound(name)

        if remaining:
            logger.info(
                f"Keeping stored bytes for {name}, still referenced by other owners",
                extra={"document_name": name, "owner": owner},
            )
        else:
            try:
                await self.blob_storage.delete(name)
            except DocumentNotFound:
                logger.warning(f"No stored bytes for {name}", extra={"document_name": name, "owner": owner})

        logger.info("Document deleted", extra={"document_name": name, "owner": owner})

    async def download_document(self, name: str) -> bytes:
        return await self.blob_storage.download(name)

    async def list_documents(self, owner: str) -> List[DocumentSummary]:
        """Documents uploaded by ``owner`` with their storage state, ordered by name."""
        async def _list():
            async with self.session_factory() as session:
                result = await session.execute(
                    select(DocumentVerification)
                    .where(DocumentVerification.owner == owner)
                    .order_by(DocumentVerification.id.desc())
                )
                return list(result.scalars().all())

        latest = {}
        for record in await self._db(_list, "list documents"):
            latest.setdefault(record.document_name, record)

        summaries = []
        for name in sorted(latest):
            record = latest[name]
            stored = await self.blob_storage.exists(name)
            summaries.append(
                DocumentSummary(
                    name=name,
                    url=self.blob_storage.public_url(name),
                    size=await self.blob_storage.size(name) if stored else 0,
                    content_type=record.content_type or "",
                    stored=stored,
                    record=record,
                )
            )
        return summaries

    async def chain(self) -> List[DocumentVerification]:
        """All verification records in insertion order."""
        async def _chain():
            async with self.session_factory() as session:
                result = await session.execute(
                    select(DocumentVerification).order_by(DocumentVerification.id.asc())
                )
                return list(result.scalars().all())

        return await self._db(_chain, "read the document chain")

    async def walk(self, records: Optional[List[DocumentVerification]] = None) -> ChainWalk:
        if records is None:
            records = await self.chain()
        walk = walk_chain(records)
        if walk.breaks or walk.forks:
            logger.warning(
                "Document chain is not contiguous",
                extra={"chain_length": len(records), "breaks": walk.breaks, "forks": walk.forks},
            )
        return walk
