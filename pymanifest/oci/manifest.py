from functools import cached_property
from typing import Literal, Sequence

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic_core import PydanticSerializationError

from pymanifest.oci.descriptor import MEDIA_TYPE_MANIFEST, Descriptor
from pymanifest.oci.digest import digest_bytes
from pymanifest.oci.errors import SerializationFailure

# Matches the indentation of the docker distribution canonical payload
INDENT = 3


class Manifest(BaseModel):
    """
    ref: https://github.com/distribution/distribution/blob/main/docs/content/spec/manifest-v2-2.md

    Layers are ordered base to top.
    """

    model_config = ConfigDict(frozen=True)

    schemaVersion: Literal[2] = 2
    mediaType: str = MEDIA_TYPE_MANIFEST
    config: Descriptor
    layers: tuple[Descriptor, ...] = ()

    def payload(self) -> bytes:
        """Return the canonical serialized form of the manifest"""
        try:
            data = self.model_dump_json(indent=INDENT, exclude_none=True)
        except (PydanticSerializationError, ValueError) as e:
            raise SerializationFailure(f"failed to serialize manifest: {e}") from e
        return data.encode("utf-8")

    @cached_property
    def descriptor(self) -> Descriptor:
        data = self.payload()
        return Descriptor(
            mediaType=self.mediaType,
            size=len(data),
            digest=digest_bytes(data),
        )


def assemble_manifest(config: Descriptor, layers: Sequence[Descriptor]) -> Manifest:
    """Combine the config and base to top ordered layer descriptors into a manifest"""
    try:
        return Manifest(config=config, layers=tuple(layers))
    except ValidationError as e:
        raise SerializationFailure(f"invalid manifest: {e}") from e
