"""
netledger Content Store Service

Content-addressable blob storage keyed by the SHA-256 of the stored bytes.
Identical bytes are stored once; blobs are never mutated.
"""

import hashlib
import uuid
from typing import List, Optional, Union

from netledger.db.database import DatabaseProtocol
from netledger.errors import ContentIntegrityError, ContentNotFoundError, ValidationError
from netledger.models.domain import BlobMetadata, ContentChunk
from netledger.services.base import Service, ServiceContext

REFERENCE_PREFIX = "ref:"
REFERENCE_LENGTH = 12
EMPTY_CONTENT_TYPE = "application/octet-stream"

ContentInput = Union[bytes, bytearray, memoryview, str]


def _as_bytes(data: ContentInput) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    raise ValidationError(f"Content must be bytes or str, got {type(data).__name__}")


def compute_hash(data: ContentInput) -> str:
    """SHA-256 hex digest of ``data`` (str is UTF-8 encoded)."""
    return hashlib.sha256(_as_bytes(data)).hexdigest()


def make_reference(content_hash: str) -> str:
    """Short external locator: ``ref:`` plus the first 12 hex characters."""
    return f"{REFERENCE_PREFIX}{content_hash[:REFERENCE_LENGTH]}"


class ContentStoreService(Service):
    """
    Service for hash-keyed blob storage.

    Example:
        store = ContentStoreService(context, db)
        digest = store.store("hello", "text/plain")
        assert store.retrieve_text(digest) == "hello"
        ref = store.reference(digest)          # "ref:2cf24dba5fb0"
        assert store.resolve_reference(ref) == digest
    """

    def __init__(self, context: ServiceContext, db: DatabaseProtocol) -> None:
        super().__init__(context)
        self.db = db

    def store(self, data: ContentInput, content_type: str = "text/plain") -> str:
        """
        Store bytes and return their hash.

        Storing bytes that already exist is a no-op returning the same hash.
        """
        payload = _as_bytes(data)
        if not content_type:
            raise ValidationError("content_type is required")
        content_hash = hashlib.sha256(payload).hexdigest()
        inserted = self.db.insert_blob(content_hash, content_type, payload)
        self.logger.debug(
            "content_stored" if inserted else "content_deduplicated",
            extra=self.log_extra(content_hash=content_hash, size=len(payload), content_type=content_type),
        )
        return content_hash

    def retrieve(self, content_hash: str) -> Optional[bytes]:
        blob = self.db.get_blob(content_hash)
        return blob.data if blob is not None else None

    def retrieve_text(self, content_hash: str, encoding: str = "utf-8") -> Optional[str]:
        data = self.retrieve(content_hash)
        return data.decode(encoding) if data is not None else None

    def require_text(self, content_hash: str) -> str:
        """Like ``retrieve_text`` but raises ``ContentNotFoundError`` for unknown hashes."""
        text = self.retrieve_text(content_hash)
        if text is None:
            raise ContentNotFoundError(f"Content {content_hash} not found", metadata={"content_hash": content_hash})
        return text

    def exists(self, content_hash: str) -> bool:
        return self.db.blob_exists(content_hash)

    def get_metadata(self, content_hash: str) -> Optional[BlobMetadata]:
        return self.db.get_blob_metadata(content_hash)

    def empty_hash(self) -> str:
        """Hash of the empty byte string (initial artifact content)."""
        return hashlib.sha256(b"").hexdigest()

    # Chunked ingestion

    def append_chunk(self, content_hash: str, data: ContentInput, index: int, offset: int) -> str:
        """Record one chunk of content keyed by its expected final hash. Returns the chunk id."""
        if index < 0 or offset < 0:
            raise ValidationError("chunk index and offset must be non-negative")
        chunk_id = str(uuid.uuid4())
        chunk = self.db.insert_chunk(chunk_id, content_hash, index, _as_bytes(data), offset)
        self.logger.debug(
            "content_chunk_appended",
            extra=self.log_extra(content_hash=content_hash, chunk_index=index, size=chunk.size),
        )
        return chunk_id

    def list_chunks(self, content_hash: str) -> List[ContentChunk]:
        return self.db.list_chunks(content_hash)

    def reconstruct(self, content_hash: str) -> Optional[bytes]:
        """Concatenate stored chunks in index order, or None when there are none."""
        chunks = self.db.list_chunks(content_hash)
        if not chunks:
            return None
        return b"".join(chunk.data for chunk in chunks)

    def promote_chunks(self, content_hash: str, content_type: str = "text/plain") -> str:
        """
        Turn a completed chunk sequence into a regular blob.

        The concatenated bytes must hash to ``content_hash``.
        """
        data = self.reconstruct(content_hash)
        if data is None:
            raise ContentNotFoundError(
                f"No chunks recorded for {content_hash}",
                metadata={"content_hash": content_hash},
            )
        actual = hashlib.sha256(data).hexdigest()
        if actual != content_hash:
            raise ContentIntegrityError(
                f"Chunks for {content_hash} hash to {actual}",
                metadata={"content_hash": content_hash, "actual_hash": actual},
            )
        return self.store(data, content_type)

    # References

    def reference(self, content_hash: str) -> str:
        return make_reference(content_hash)

    def resolve_reference(self, ref: str) -> Optional[str]:
        """
        Resolve a ``ref:`` string (or bare hash prefix) to a full hash.

        Returns None when nothing matches. When a short prefix matches several
        blobs the oldest one wins.
        """
        prefix = ref[len(REFERENCE_PREFIX):] if ref.startswith(REFERENCE_PREFIX) else ref
        prefix = prefix.strip().lower()
        if not prefix or any(ch not in "0123456789abcdef" for ch in prefix):
            return None
        matches = self.db.find_blob_hashes(prefix)
        if not matches:
            return None
        if len(matches) > 1:
            self.logger.warning(
                "content_reference_ambiguous",
                extra=self.log_extra(reference=ref, matches=len(matches)),
            )
        return matches[0]
