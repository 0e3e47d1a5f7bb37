import re
from typing import Final

from pydantic import BaseModel, ConfigDict, field_serializer

MEDIA_TYPE_MANIFEST: Final = "application/vnd.docker.distribution.manifest.v2+json"
MEDIA_TYPE_IMAGE_CONFIG: Final = "application/vnd.docker.container.image.v1+json"
MEDIA_TYPE_LAYER: Final = "application/vnd.docker.image.rootfs.diff.tar.gzip"
MEDIA_TYPE_UNCOMPRESSED_LAYER: Final = "application/vnd.docker.image.rootfs.diff.tar"

MAX_SIZE: Final = 2**63 - 1
DIGEST_RE = re.compile(r"[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]+")


class Descriptor(BaseModel):
    """
    ref: https://github.com/distribution/distribution/blob/main/docs/content/spec/manifest-v2-2.md
    """

    model_config = ConfigDict(frozen=True)

    mediaType: str
    size: int
    digest: str
    urls: list[str] | None = None
    annotations: dict[str, str] | None = None

    @field_serializer("size")
    def _serialize_size(self, size: int) -> int:
        if not 0 <= size <= MAX_SIZE:
            raise ValueError(f"size {size} of {self.digest} is not a valid int64 size")
        return size

    @field_serializer("digest")
    def _serialize_digest(self, digest: str) -> str:
        if not DIGEST_RE.fullmatch(digest):
            raise ValueError(f"invalid digest {digest!r}")
        return digest
