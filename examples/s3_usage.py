#!/usr/bin/env python
"""
S3 backend example for OSS-Store.

Credentials come from the usual AWS environment variables or instance
role. Pass a bucket you can write to as the first argument.
"""

import io
import sys

from oss_store import create_storage


def main(bucket):
    storage = create_storage("s3", bucket=bucket, acl="private")
    print(f"Endpoint: {storage.get_endpoint()}")

    handle = storage.put("oss-store-demo/hello.txt", stream=io.BytesIO(b"hello from oss-store"))
    print(f"Stored {handle.path}")

    with storage.get(handle.path) as f:
        print(f"Read back: {f.read()!r}")

    for entry in storage.list("oss-store-demo/"):
        print(f"  {entry.path} ({entry.last_modified})")

    print(f"URL: {storage.get_url(handle.path)}")
    storage.delete(handle.path)


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(f"usage: {sys.argv[0]} BUCKET")
        sys.exit(1)
    main(sys.argv[1])
