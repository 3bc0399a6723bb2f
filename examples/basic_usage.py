#!/usr/bin/env python
"""
Basic usage example for OSS-Store.

This script demonstrates how to:
1. Start an IPFS backed storage node
2. Store a file and a directory
3. Read content back through the staging directory
4. List a directory
5. Unpin content

Requires the ``ipfs`` (kubo) executable on PATH.
"""

import logging
import os
import shutil
import tempfile

from oss_store import NodeConfig, create_storage


def create_sample_files(base_path):
    """Create a sample file and a sample directory."""
    file_path = os.path.join(base_path, "test.dat")
    with open(file_path, "wb") as f:
        f.write(b"some test data")

    dir_path = os.path.join(base_path, "docs")
    os.makedirs(dir_path)
    for i in range(3):
        with open(os.path.join(dir_path, f"page{i}.txt"), "w") as f:
            f.write(f"This is page {i}\n")
    return file_path, dir_path


def main():
    logging.basicConfig(level=logging.INFO)

    work_path = tempfile.mkdtemp()
    print(f"Using temporary path: {work_path}")

    try:
        file_path, dir_path = create_sample_files(work_path)

        # Offline node: no bootstrap peers, nothing leaves this host
        config = NodeConfig(
            root_path=os.path.join(work_path, "node"),
            networking=False,
        )

        print("\nStarting IPFS storage...")
        with create_storage("ipfs", config) as storage:
            print(f"Node address: {storage.node_addr() or '(none)'}")

            handle = storage.put(file_path)
            print(f"\nStored {file_path} as {handle.path}")

            with storage.get(handle.path) as f:
                print(f"Read back: {f.read()!r}")

            dir_handle = storage.put(dir_path)
            print(f"\nStored directory as {dir_handle.path}")
            for entry in storage.list(dir_handle.path):
                print(f"  {entry.path}")

            local_dir = storage.get_directory(dir_handle.path)
            print(f"Staged directory at {local_dir}: {sorted(os.listdir(local_dir))}")

            storage.delete(handle.path)
            storage.delete(dir_handle.path)
            print("\nUnpinned stored content")

        print("\nBasic usage demo completed successfully!")

    finally:
        print(f"\nCleaning up temporary path: {work_path}")
        shutil.rmtree(work_path)


if __name__ == "__main__":
    main()
