"""
Tests for the local and S3 artifact stores.
"""

import threading

import pytest
from botocore.exceptions import ClientError

from script_render_backend.configuration import make_runtime_config
from script_render_backend.errors import RenderFailure
from script_render_backend.storage import (
    LocalArtifactStore,
    S3ArtifactStore,
    artifact_filename,
    build_artifact_store,
)


class StubS3Client:
    def __init__(self, fail=False):
        self.fail = fail
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType):
        if self.fail:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
        self.objects[(Bucket, Key)] = (Body, ContentType)

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        return f"https://{Params['Bucket']}.s3.amazonaws.com/{Params['Key']}?expires={ExpiresIn}"


class TestArtifactFilename:
    def test_adds_pdf_extension(self):
        assert artifact_filename("script-v1-1700000000000") == "script-v1-1700000000000.pdf"

    def test_unsafe_characters_are_replaced(self):
        assert "/" not in artifact_filename("../../etc/passwd")


class TestLocalArtifactStore:
    def test_save_writes_file_under_public_prefix(self, tmp_path):
        store = LocalArtifactStore(tmp_path / "pdfs")
        ref = store.save(b"%PDF-1.7\n", "script-v1-1")

        assert ref.path == "/pdfs/script-v1-1.pdf"
        assert ref.size_bytes == 9
        assert ref.mime_type == "application/pdf"
        assert store.public_path(ref) == ref.path
        assert store.resolve(ref).read_bytes() == b"%PDF-1.7\n"

    def test_no_temporary_files_are_left_behind(self, tmp_path):
        store = LocalArtifactStore(tmp_path / "pdfs")
        store.save(b"data", "script-v1-1")

        assert [p.name for p in store.root.iterdir()] == ["script-v1-1.pdf"]

    def test_concurrent_saves_of_one_key_do_not_collide(self, tmp_path):
        """Threads writing the same key each use their own temporary file."""
        store = LocalArtifactStore(tmp_path / "pdfs")
        payloads = [bytes([n]) * 65536 for n in range(8)]
        errors = []

        def save(data):
            try:
                store.save(data, "script-v1-1")
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)

        threads = [threading.Thread(target=save, args=(data,)) for data in payloads]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)

        assert errors == []
        assert [p.name for p in store.root.iterdir()] == ["script-v1-1.pdf"]
        assert (store.root / "script-v1-1.pdf").read_bytes() in payloads

    def test_distinct_keys_do_not_overwrite(self, tmp_path):
        store = LocalArtifactStore(tmp_path / "pdfs")
        first = store.save(b"first", "script-v1-1")
        second = store.save(b"second", "script-v1-2")

        assert store.resolve(first).read_bytes() == b"first"
        assert store.resolve(second).read_bytes() == b"second"

    def test_custom_public_prefix(self, tmp_path):
        store = LocalArtifactStore(tmp_path, public_prefix="files/")
        assert store.save(b"x", "a").path == "/files/a.pdf"


class TestS3ArtifactStore:
    def test_save_uploads_object(self):
        client = StubS3Client()
        store = S3ArtifactStore("renders", prefix="scripts", client=client)
        ref = store.save(b"%PDF", "script-v1-1")

        assert ref.path == "s3://renders/scripts/script-v1-1.pdf"
        assert client.objects[("renders", "scripts/script-v1-1.pdf")] == (b"%PDF", "application/pdf")

    def test_public_path_is_presigned(self):
        store = S3ArtifactStore("renders", client=StubS3Client(), expiration=60)
        ref = store.save(b"%PDF", "script-v1-1")

        assert store.public_path(ref) == "https://renders.s3.amazonaws.com/script-v1-1.pdf?expires=60"

    def test_upload_error_is_render_failure(self):
        store = S3ArtifactStore("renders", client=StubS3Client(fail=True))
        with pytest.raises(RenderFailure):
            store.save(b"%PDF", "script-v1-1")

    def test_bucket_is_required(self):
        with pytest.raises(ValueError):
            S3ArtifactStore("")


class TestBuildArtifactStore:
    def test_local_backend(self, tmp_path):
        config = make_runtime_config({"storage": {"backend": "local", "local_dir": str(tmp_path)}})
        assert isinstance(build_artifact_store(config), LocalArtifactStore)

    def test_s3_backend(self):
        config = make_runtime_config({"storage": {"backend": "s3", "s3_bucket": "renders"}})
        store = build_artifact_store(config)
        assert isinstance(store, S3ArtifactStore)
        assert store.bucket == "renders"

    def test_unknown_backend(self):
        config = make_runtime_config({"storage": {"backend": "ftp"}})
        with pytest.raises(ValueError):
            build_artifact_store(config)
