import io

from pydantic import BaseModel, ConfigDict, ValidationError

from pymanifest.oci.descriptor import MEDIA_TYPE_IMAGE_CONFIG, Descriptor
from pymanifest.oci.digest import compute_digest
from pymanifest.oci.errors import ConfigError


class RootFS(BaseModel):
    """
    ref: https://github.com/moby/docker-image-spec/blob/main/spec.md#image-json-field-descriptions
    """

    type: str = "layers"
    diff_ids: list[str] = []


class ImageConfig(BaseModel):
    """The part of the image configuration needed to build a manifest"""

    model_config = ConfigDict(extra="ignore")

    rootfs: RootFS
    architecture: str | None = None
    os: str | None = None


def config_descriptor(
    config: bytes, media_type: str = MEDIA_TYPE_IMAGE_CONFIG
) -> Descriptor:
    """Return the descriptor of the raw image configuration, it is never compressed"""
    size, digest = compute_digest(io.BytesIO(config))
    return Descriptor(mediaType=media_type, size=size, digest=digest)


def rootfs_from_config(config: bytes) -> RootFS:
    """Read the root filesystem chain, ordered base to top, from the image config"""
    try:
        return ImageConfig.model_validate_json(config).rootfs
    except ValidationError as e:
        raise ConfigError(f"invalid image configuration: {e}") from e
