"""
Tests for the content-addressable store.

Covers hashing and deduplication, references, and the chunked ingestion path.
"""

import hashlib

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from netledger.errors import ContentIntegrityError, ContentNotFoundError
from netledger.services.content_store import compute_hash, make_reference


def test_store_returns_sha256_of_bytes(runtime):
    digest = runtime.content.store(b"hello world", "text/plain")

    assert digest == hashlib.sha256(b"hello world").hexdigest()
    assert runtime.content.exists(digest)
    assert runtime.content.retrieve(digest) == b"hello world"


def test_str_input_is_utf8_encoded(runtime):
    text = "grüße"
    digest = runtime.content.store(text, "text/plain")

    assert digest == compute_hash(text.encode("utf-8"))
    assert runtime.content.retrieve_text(digest) == text


def test_storing_identical_bytes_is_a_noop(runtime):
    first = runtime.content.store("same", "text/plain")
    second = runtime.content.store("same", "text/markdown")

    assert first == second
    # The first content type wins; the blob is never rewritten.
    assert runtime.content.get_metadata(first).content_type == "text/plain"


def test_metadata(runtime):
    digest = runtime.content.store(b"12345", "application/octet-stream")
    meta = runtime.content.get_metadata(digest)

    assert meta.size == 5
    assert meta.content_type == "application/octet-stream"
    assert meta.created_at


def test_unknown_hash(runtime):
    unknown = "0" * 64
    assert runtime.content.retrieve(unknown) is None
    assert runtime.content.retrieve_text(unknown) is None
    assert runtime.content.get_metadata(unknown) is None
    assert not runtime.content.exists(unknown)
    with pytest.raises(ContentNotFoundError):
        runtime.content.require_text(unknown)


def test_empty_content(runtime):
    digest = runtime.content.store(b"", "text/plain")

    assert digest == runtime.content.empty_hash()
    assert runtime.content.retrieve(digest) == b""
    assert runtime.content.get_metadata(digest).size == 0


@settings(max_examples=50, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(data=st.binary(max_size=2048))
def test_store_retrieve_roundtrip(runtime, data):
    digest = runtime.content.store(data, "application/octet-stream")
    again = runtime.content.store(data, "application/octet-stream")

    assert digest == again == hashlib.sha256(data).hexdigest()
    assert runtime.content.retrieve(digest) == data


# =============================================================================
# References
# =============================================================================

def test_reference_format(runtime):
    digest = runtime.content.store("referenced", "text/plain")
    ref = runtime.content.reference(digest)

    assert ref == make_reference(digest)
    assert ref.startswith("ref:")
    assert len(ref) == len("ref:") + 12
    assert digest.startswith(ref[4:])


def test_resolve_reference(runtime):
    digest = runtime.content.store("resolve me", "text/plain")

    assert runtime.content.resolve_reference(runtime.content.reference(digest)) == digest
    assert runtime.content.resolve_reference(digest[:16]) == digest
    assert runtime.content.resolve_reference(digest) == digest


def test_resolve_reference_misses(runtime):
    runtime.content.store("something", "text/plain")

    assert runtime.content.resolve_reference("ref:not-hex!") is None
    assert runtime.content.resolve_reference("ref:") is None
    assert runtime.content.resolve_reference("ref:" + "f" * 12) is None


# =============================================================================
# Chunked ingestion
# =============================================================================

def test_reconstruct_orders_by_index(runtime):
    payload = b"first part|second part"
    digest = hashlib.sha256(payload).hexdigest()

    runtime.content.append_chunk(digest, b"second part", 1, 11)
    runtime.content.append_chunk(digest, b"first part|", 0, 0)

    chunks = runtime.content.list_chunks(digest)
    assert [c.chunk_index for c in chunks] == [0, 1]
    assert runtime.content.reconstruct(digest) == payload
    # Chunks alone do not make a blob.
    assert not runtime.content.exists(digest)


def test_promote_chunks_stores_blob(runtime):
    payload = "chunked content".encode("utf-8")
    digest = hashlib.sha256(payload).hexdigest()
    runtime.content.append_chunk(digest, payload[:7], 0, 0)
    runtime.content.append_chunk(digest, payload[7:], 1, 7)

    promoted = runtime.content.promote_chunks(digest, "text/plain")

    assert promoted == digest
    assert runtime.content.retrieve(digest) == payload


def test_promote_chunks_rejects_hash_mismatch(runtime):
    digest = hashlib.sha256(b"expected").hexdigest()
    runtime.content.append_chunk(digest, b"something else", 0, 0)

    with pytest.raises(ContentIntegrityError):
        runtime.content.promote_chunks(digest)
    assert not runtime.content.exists(digest)


def test_reconstruct_without_chunks(runtime):
    digest = "a" * 64
    assert runtime.content.reconstruct(digest) is None
    with pytest.raises(ContentNotFoundError):
        runtime.content.promote_chunks(digest)
