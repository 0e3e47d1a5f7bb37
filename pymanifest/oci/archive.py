"""Local image store backed by an image archive as written by `docker save`

The archive is either the tarball itself or a directory it was extracted to.
Its `manifest.json` lists, per image, the config file, the repository tags and
the layer files ordered base to top.
"""
import json
import logging
import tarfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator

from pydantic import BaseModel, Field, ValidationError

from pymanifest.oci.descriptor import MEDIA_TYPE_LAYER, MEDIA_TYPE_UNCOMPRESSED_LAYER
from pymanifest.oci.digest import digest_bytes
from pymanifest.oci.errors import (
    ImageNotFound,
    InvalidReference,
    ReferenceNotFound,
    StoreError,
)
from pymanifest.oci.reference import Reference
from pymanifest.oci.store import Image

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"
MEDIA_TYPE_ZSTD_LAYER = "application/vnd.oci.image.layer.v1.tar+zstd"


class ArchiveEntry(BaseModel):
    """A single image in `manifest.json`"""

    config: str = Field(alias="Config")
    repo_tags: list[str] | None = Field(alias="RepoTags", default=None)
    layers: list[str] = Field(alias="Layers", default=[])


@dataclass(frozen=True, slots=True)
class ArchiveLayer:
    """Layer node, `index` 0 is the base layer of the image"""

    entry: int
    index: int
    path: str


class ArchiveStore:
    """Layer, image and reference store over a `docker save` archive."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._tar: tarfile.TarFile | None = None
        self._entries: list[ArchiveEntry] | None = None
        self._media_types: dict[ArchiveLayer, str] = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        if self._tar is not None:
            self._tar.close()
            self._tar = None

    @property
    def archive(self) -> tarfile.TarFile:
        if self._tar is None:
            try:
                self._tar = tarfile.open(self.path, mode="r:*")
            except (tarfile.TarError, OSError) as e:
                raise StoreError(f"cannot open archive {self.path}: {e}") from e
        return self._tar

    @contextmanager
    def _open_member(self, name: str) -> Iterator[BinaryIO]:
        if self.path.is_dir():
            try:
                f = (self.path / name).open("rb")
            except FileNotFoundError as e:
                raise StoreError(f"{name} is missing from {self.path}") from e
        else:
            try:
                f = self.archive.extractfile(name)
            except KeyError as e:
                raise StoreError(f"{name} is missing from {self.path}") from e
            if f is None:
                raise StoreError(f"{name} in {self.path} is not a regular file")
        with f:
            yield f

    def _read(self, name: str) -> bytes:
        with self._open_member(name) as f:
            return f.read()

    @property
    def entries(self) -> list[ArchiveEntry]:
        if self._entries is None:
            try:
                data = json.loads(self._read("manifest.json"))
                self._entries = [ArchiveEntry.model_validate(e) for e in data]
            except (ValueError, ValidationError) as e:
                raise StoreError(f"invalid manifest.json in {self.path}: {e}") from e
            logger.debug("Loaded %d image(s) from %s", len(self._entries), self.path)
        return self._entries

    # ReferenceStore

    def resolve(self, repository: str, tag: str) -> str:
        wanted = Reference(repository=repository, tag=tag).familiar()
        for entry in self.entries:
            for repo_tag in entry.repo_tags or []:
                try:
                    found = Reference.from_string(repo_tag).familiar()
                except InvalidReference:
                    logger.debug("Skipping invalid tag %r in %s", repo_tag, self.path)
                    continue
                if found == wanted:
                    return digest_bytes(self._read(entry.config))
        raise ReferenceNotFound(f"{repository}:{tag} not found in {self.path}")

    # ImageStore

    def get(self, image_id: str) -> Image:
        if ":" not in image_id:
            image_id = f"sha256:{image_id}"
        for idx, entry in enumerate(self.entries):
            config = self._read(entry.config)
            if digest_bytes(config) != image_id:
                continue
            top_layer = None
            if entry.layers:
                top = len(entry.layers) - 1
                top_layer = ArchiveLayer(entry=idx, index=top, path=entry.layers[top])
            return Image(id=image_id, config=config, top_layer=top_layer)
        raise ImageNotFound(f"image {image_id} not found in {self.path}")

    # LayerStore

    def open(self, node: ArchiveLayer):
        return self._open_member(node.path)

    def parent(self, node: ArchiveLayer) -> ArchiveLayer | None:
        if node.index == 0:
            return None
        index = node.index - 1
        path = self.entries[node.entry].layers[index]
        return ArchiveLayer(entry=node.entry, index=index, path=path)

    def media_type(self, node: ArchiveLayer) -> str:
        if node not in self._media_types:
            with self._open_member(node.path) as f:
                magic = f.read(4)
            if magic.startswith(GZIP_MAGIC):
                media_type = MEDIA_TYPE_LAYER
            elif magic.startswith(ZSTD_MAGIC):
                media_type = MEDIA_TYPE_ZSTD_LAYER
            else:
                media_type = MEDIA_TYPE_UNCOMPRESSED_LAYER
            self._media_types[node] = media_type
        return self._media_types[node]

    def content_id(self, node: ArchiveLayer) -> str:
        return node.path
