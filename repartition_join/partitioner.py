"""
Copyright (c) 2025. All rights reserved.
"""

"""
Co-partition function.

Routes a join key to one of N partitions. The route depends on the key alone,
never on the relation tag, so matching LEFT and RIGHT records always land in
the same partition.

The hash is the 32-bit polynomial byte hash used by Hadoop's Text keys
(h = 31 * h + byte, seeded with 1, bytes taken as signed). Python's built-in
hash() is salted per process and cannot be used for routing.
"""

INT32_MASK = 0xFFFFFFFF
SIGN_BIT_MASK = 0x7FFFFFFF


def hash_bytes(data: bytes) -> int:
    """Return the signed 32-bit polynomial hash of a byte string."""
    h = 1
    for byte in data:
        signed_byte = byte - 256 if byte > 127 else byte
        h = (31 * h + signed_byte) & INT32_MASK
    # Reinterpret as a signed 32-bit integer
    return h - (1 << 32) if h & 0x80000000 else h


def partition(key: str, num_partitions: int) -> int:
    """Return the partition in [0, num_partitions) that owns this key."""
    if num_partitions < 1:
        raise ValueError(f"num_partitions must be >= 1, got {num_partitions}")
    return (hash_bytes(key.encode("utf-8")) & SIGN_BIT_MASK) % num_partitions
