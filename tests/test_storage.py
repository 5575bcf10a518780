"""
Tests for document storage, configuration and request helpers.
"""

import io
from pathlib import Path

import pytest
from botocore.exceptions import NoCredentialsError
from omegaconf.errors import ConfigKeyError

from confpaper_backend.configuration import make_runtime_config
from confpaper_backend.docstore import DocumentStore
from confpaper_backend.qrequest import Qrequest
from confpaper_backend.utils import friendly_boolean, simplify_whitespace, sniff_mimetype, valid_email


class _UncredentialedS3:
    """An S3 client that behaves as boto3 does when no credentials are found."""

    def upload_file(self, *args, **kwargs):
        raise NoCredentialsError()

    def get_object(self, **kwargs):
        raise NoCredentialsError()

    def generate_presigned_url(self, *args, **kwargs):
        raise NoCredentialsError()


class TestDocumentStore:
    """Tests for the content-addressed document store."""

    def test_store_and_load(self, tmp_path):
        store = DocumentStore(tmp_path)
        stored = store.store(b"%PDF-1.4\nhello\n")
        assert stored.size == 15
        assert stored.storage_key == stored.sha256
        assert stored.head.startswith(b"%PDF-")
        assert store.load(stored.storage_key) == b"%PDF-1.4\nhello\n"

    def test_stream_matches_bytes(self, tmp_path):
        """Streams and bytes with the same content share one body."""
        store = DocumentStore(tmp_path)
        from_bytes = store.store(b"same content")
        from_stream = store.store(io.BytesIO(b"same content"))
        assert from_stream.sha256 == from_bytes.sha256
        assert from_stream.size == from_bytes.size
        assert not list(tmp_path.rglob("*.part"))

    def test_load_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            DocumentStore(tmp_path).load("0" * 64)

    def test_no_url_without_bucket(self, tmp_path):
        assert DocumentStore(tmp_path).generate_presigned_url("0" * 64) is None

    def test_stage_is_not_stored(self, tmp_path):
        """Staged bodies are hashed but only enter the store on commit."""
        store = DocumentStore(tmp_path)
        staged = store.stage(io.BytesIO(b"%PDF-1.4\nstaged\n"))
        assert staged.size == 16
        assert staged.head.startswith(b"%PDF-")
        with pytest.raises(FileNotFoundError):
            store.load(staged.sha256)

        stored = store.commit(staged)
        assert stored.storage_key == staged.sha256
        assert store.load(stored.storage_key) == b"%PDF-1.4\nstaged\n"
        assert not list(tmp_path.rglob("*.part"))

    def test_discard_removes_spool(self, tmp_path):
        store = DocumentStore(tmp_path)
        staged = store.stage(io.BytesIO(b"discarded"))
        assert list(tmp_path.rglob("*.part"))
        store.discard(staged)
        assert list(tmp_path.rglob("*")) == []

    def test_s3_without_credentials(self, tmp_path):
        """Missing AWS credentials are logged; the local copy is kept."""
        store = DocumentStore(tmp_path, bucket="test-bucket")
        store._s3_client = _UncredentialedS3()
        stored = store.store(b"%PDF-1.4\nmirrored\n")
        assert store.load(stored.storage_key) == b"%PDF-1.4\nmirrored\n"
        assert store.generate_presigned_url(stored.storage_key) is None
        with pytest.raises(FileNotFoundError):
            store.load("0" * 64)


class TestConfiguration:
    """Tests for runtime configuration."""

    def test_environment_overrides(self, test_dirs):
        config = make_runtime_config()
        assert config.storage.db_path == str(Path(test_dirs) / "confpaper.db")

    def test_explicit_overrides(self):
        config = make_runtime_config({"conference": {"submissions_open": False}})
        assert config.conference.submissions_open is False
        assert config.conference.short_name == "TC"

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigKeyError):
            make_runtime_config({"conference": {"deadline": "tomorrow"}})


class TestUtils:
    """Tests for utility helpers."""

    def test_friendly_boolean(self):
        assert friendly_boolean("yes") is True
        assert friendly_boolean("OFF") is False
        assert friendly_boolean(1) is True
        assert friendly_boolean("maybe") is None
        assert friendly_boolean(None) is None

    def test_sniff_mimetype(self):
        assert sniff_mimetype(b"%PDF-1.7\n", "text/plain") == "application/pdf"
        assert sniff_mimetype(b"PK\x03\x04rest") == "application/zip"
        assert sniff_mimetype(b"\x00\x01\x02") == "application/octet-stream"
        assert sniff_mimetype(b"\x00\x01\x02", "image/png") == "image/png"
        assert sniff_mimetype(b"hello") == "text/plain"

    def test_text_helpers(self):
        assert simplify_whitespace("  a \n b\t") == "a b"
        assert valid_email("floyd@ee.lbl.gov")
        assert not valid_email("floyd at lbl")


class TestQrequest:
    """Tests for the request wrapper."""

    def test_parse_content_type(self):
        assert Qrequest.parse_content_type("application/JSON; charset=utf-8") == "application/json"
        assert Qrequest.parse_content_type(None) is None

    def test_body_filename_cleanup(self):
        qreq = Qrequest("POST", body=b"PK\x03\x04", content_type="application/zip")
        name = qreq.body_filename(".zip")
        assert Path(name).read_bytes() == b"PK\x03\x04"
        qreq.cleanup()
        assert not Path(name).exists()

    def test_empty_body(self):
        """Empty bodies are spooled too, so the reader reports the problem."""
        qreq = Qrequest("POST", content_type="application/zip")
        name = qreq.body_filename(".zip")
        assert Path(name).read_bytes() == b""
        qreq.cleanup()
        assert not Path(name).exists()
