"""Capabilities of the local image storage used to build a manifest

The manifest pipeline only depends on these narrow interfaces,
`pymanifest.oci.archive.ArchiveStore` implements all of them.
"""
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Protocol


class LayerStore(Protocol):
    """Access to stored layers, a layer node is an opaque handle"""

    def open(self, node: Any) -> AbstractContextManager[BinaryIO]:
        """Return a context manager yielding the layer content

        The content is released when the context exits.
        """

    def parent(self, node: Any) -> Any | None:
        ...

    def media_type(self, node: Any) -> str:
        ...

    def content_id(self, node: Any) -> str:
        ...


@dataclass(frozen=True, slots=True)
class Image:
    """A locally stored image"""

    id: str
    config: bytes = field(repr=False)
    top_layer: Any | None = None


class ImageStore(Protocol):
    def get(self, image_id: str) -> Image:
        ...


class ReferenceStore(Protocol):
    def resolve(self, repository: str, tag: str) -> str:
        """Return the image id tagged `repository:tag`"""
