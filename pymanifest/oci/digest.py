import hashlib
from typing import BinaryIO, Final

from pymanifest.oci.errors import ReadFailure

ALGORITHM: Final = "sha256"
BUFFER_SIZE: Final = 4096


def digest_bytes(data: bytes) -> str:
    """Return the digest of in-memory content as '<algorithm>:<hex>'"""
    return f"{ALGORITHM}:{hashlib.new(ALGORITHM, data).hexdigest()}"


def compute_digest(stream: BinaryIO) -> tuple[int, str]:
    """Consume `stream` and return its total size and digest

    The stream is read in fixed size chunks, it is never held in memory as a whole.
    A stream ending early is not an error, the consumed size is reported.
    """
    hasher = hashlib.new(ALGORITHM)
    size = 0
    try:
        while chunk := stream.read(BUFFER_SIZE):
            hasher.update(chunk)
            size += len(chunk)
    except OSError as e:
        raise ReadFailure.from_error(e) from e
    return size, f"{ALGORITHM}:{hasher.hexdigest()}"
