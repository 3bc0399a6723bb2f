"""
Hash utility functions.
"""

import hashlib
import mmh3


CHUNK_SIZE = 1024 * 1024


def compute_content_hash(content: bytes, method: str = "murmur3", seed: int = 42) -> str:
    """
    Compute a hash for the given content.

    Args:
        content: Content to hash
        method: Hash method ('sha256', 'murmur3')
        seed: Seed for MurmurHash

    Returns:
        String hash value
    """
    if not content:
        return "empty"

    if method == "sha256":
        return hashlib.sha256(content).hexdigest()
    elif method == "murmur3":
        # 128-bit variant: staged files can be large, keep collisions unlikely
        hash_value = mmh3.hash128(content, seed=seed)
        return f"{hash_value:032x}"
    else:
        raise ValueError(f"Unsupported hash method: {method}")


def compute_file_checksum(path: str, method: str = "murmur3", seed: int = 42) -> str:
    """
    Compute a hash for the content of a local file.

    The file is read in chunks; the result equals
    ``compute_content_hash`` of the whole content.

    Args:
        path: Path of the file
        method: Hash method ('sha256', 'murmur3')
        seed: Seed for MurmurHash

    Returns:
        String hash value
    """
    if method == "sha256":
        hasher = hashlib.sha256()
    elif method == "murmur3":
        hasher = mmh3.mmh3_x64_128(seed=seed)
    else:
        raise ValueError(f"Unsupported hash method: {method}")

    size = 0
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
            size += len(chunk)

    if not size:
        return "empty"
    if method == "sha256":
        return hasher.hexdigest()
    return f"{hasher.uintdigest():032x}"
