from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FailureKind(str, Enum):
    """Whether a failed descriptor computation may be attempted again."""

    RETRYABLE = "retryable"
    FATAL = "fatal"


class ManifestError(Exception):
    """Base error for everything raised while producing a manifest.

    The failure kind is attached where the error is raised,
    only the component detecting the condition knows if it is transient.
    """

    kind: FailureKind = FailureKind.FATAL

    def __init__(self, message: str, kind: FailureKind | None = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind is FailureKind.RETRYABLE


class ReadFailure(ManifestError):
    """Raised when a content stream errors before its natural end."""

    kind = FailureKind.RETRYABLE

    @classmethod
    def from_error(
        cls, error: BaseException, kind: FailureKind | None = None
    ) -> ManifestError:
        """Wrap a low level stream error

        Errors that already carry a classification are returned unchanged.
        """
        if isinstance(error, ManifestError):
            return error
        return cls(f"failed to read content: {error}", kind=kind)


class UnsupportedEncoding(ManifestError):
    """Raised when a layer is neither compressed nor uncompressed tar."""


class ChainLengthMismatch(ManifestError):
    """Raised when the layer store and the image rootfs disagree on the layer count."""


class SerializationFailure(ManifestError):
    """Raised when the manifest cannot be encoded to its canonical form."""


class ConfigError(ManifestError):
    """Raised when the image configuration cannot be parsed."""


class StoreError(ManifestError):
    """Raised when a local store is unreadable or inconsistent."""


class ReferenceNotFound(StoreError):
    """Raised when a repository and tag do not resolve to an image."""


class ImageNotFound(StoreError):
    """Raised when an image id is unknown to the image store."""


class InvalidReference(ManifestError):
    """Raised when a reference string cannot be parsed."""


def classify(error: BaseException) -> FailureKind:
    """Return the failure kind for any exception

    Plain I/O errors are transient, anything unknown is not retried.
    """
    if isinstance(error, ManifestError):
        return error.kind
    if isinstance(error, OSError):
        return FailureKind.RETRYABLE
    return FailureKind.FATAL


def is_retryable(error: BaseException) -> bool:
    return classify(error) is FailureKind.RETRYABLE


def retry(func: Callable[[], T], attempts: int = 1) -> T:
    """Call `func` until it succeeds, at most `attempts` times

    Only retryable failures are attempted again, the last failure is re-raised.
    """
    if attempts < 1:
        raise ValueError("attempts should be at least 1")
    attempt = 1
    while True:
        try:
            return func()
        except Exception as e:
            if attempt >= attempts or not is_retryable(e):
                raise
            logger.warning("Attempt %d/%d failed, retrying: %s", attempt, attempts, e)
        attempt += 1
