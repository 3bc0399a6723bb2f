"""
Tests for the S3 storage backend, run against fsspec's in-memory filesystem.
"""

import io
import os
import tempfile
import unittest
import uuid

import fsspec

from oss_store.core.exceptions import NotFoundError
from oss_store.s3.storage import S3Storage, to_relative_path


class TestS3Storage(unittest.TestCase):
    """Tests for S3Storage."""

    def setUp(self):
        self.fs = fsspec.filesystem("memory")
        self.bucket = f"bucket-{uuid.uuid4().hex[:8]}"
        self.storage = S3Storage(self.bucket, region="eu-west-1", fs=self.fs)

    def tearDown(self):
        if self.fs.exists(self.bucket):
            self.fs.rm(self.bucket, recursive=True)

    def put_bytes(self, path, content):
        return self.storage.put(path, stream=io.BytesIO(content))

    def test_to_relative_path(self):
        self.assertEqual(to_relative_path("a/b.txt"), "/a/b.txt")
        self.assertEqual(to_relative_path("//a/b.txt"), "/a/b.txt")

    def test_put_and_get(self):
        handle = self.put_bytes("docs/readme.md", b"# readme")
        self.assertEqual(handle.path, "/docs/readme.md")
        self.assertEqual(handle.name, "readme.md")
        self.assertIs(handle.backend, self.storage)

        with self.storage.get("docs/readme.md") as f:
            self.assertEqual(f.read(), b"# readme")

    def test_put_local_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            local = os.path.join(tmp, "data.bin")
            with open(local, "wb") as f:
                f.write(b"local bytes")
            self.storage.put(local)
            with self.storage.get_stream(local) as f:
                self.assertEqual(f.read(), b"local bytes")

    def test_put_missing_local_file(self):
        with self.assertRaises(NotFoundError):
            self.storage.put("/no/such/file.bin")

    def test_get_missing(self):
        with self.assertRaises(NotFoundError):
            self.storage.get("missing.txt")
        with self.assertRaises(NotFoundError):
            self.storage.get_stream("missing.txt")

    def test_delete(self):
        self.put_bytes("a.txt", b"a")
        self.storage.delete("a.txt")
        with self.assertRaises(NotFoundError):
            self.storage.get("a.txt")
        with self.assertRaises(NotFoundError):
            self.storage.delete("a.txt")

    def test_list_prefix(self):
        self.put_bytes("logs/2024/a.log", b"a")
        self.put_bytes("logs/2024/b.log", b"b")
        self.put_bytes("logs/2025/c.log", b"c")
        self.put_bytes("other/d.txt", b"d")

        paths = [handle.path for handle in self.storage.list("logs/2024")]
        self.assertEqual(paths, ["/logs/2024/a.log", "/logs/2024/b.log"])

        paths = [handle.path for handle in self.storage.list("logs/")]
        self.assertEqual(len(paths), 3)

        self.assertEqual(self.storage.list("nothing/here"), [])

    def test_get_url(self):
        self.assertEqual(self.storage.get_url("/a/b.txt"), f"s3://{self.bucket}/a/b.txt")

    def test_get_endpoint(self):
        self.assertEqual(self.storage.get_endpoint(), f"{self.bucket}.s3.eu-west-1.amazonaws.com")

        storage = S3Storage(self.bucket, fs=self.fs)
        self.assertEqual(storage.get_endpoint(), f"{self.bucket}.s3.amazonaws.com")

        storage = S3Storage(self.bucket, endpoint_url="http://minio.local:9000", fs=self.fs)
        self.assertEqual(storage.get_endpoint(), "minio.local:9000")


if __name__ == "__main__":
    unittest.main()
