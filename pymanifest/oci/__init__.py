"""Docker image manifest builder

This module builds the schema 2 manifest of a locally stored image.
"""
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from pymanifest.oci.config import config_descriptor, rootfs_from_config
from pymanifest.oci.descriptor import (
    MEDIA_TYPE_IMAGE_CONFIG,
    MEDIA_TYPE_LAYER,
    MEDIA_TYPE_MANIFEST,
    MEDIA_TYPE_UNCOMPRESSED_LAYER,
    Descriptor,
)
from pymanifest.oci.errors import FailureKind, ManifestError, classify, retry
from pymanifest.oci.layer import canonical_order, walk_layers
from pymanifest.oci.manifest import Manifest, assemble_manifest
from pymanifest.oci.reference import Reference
from pymanifest.oci.store import ImageStore, LayerStore, ReferenceStore

logger = logging.getLogger(__name__)


def build_manifest(
    config: bytes,
    config_media_type: str,
    top_layer: Any | None,
    chain_length: int,
    layer_store: LayerStore,
) -> bytes:
    """Return the serialized manifest of an image

    :param config: The raw image configuration.
    :param config_media_type: The media type of the configuration.
    :param top_layer: The topmost layer node, None for an image without layers.
    :param chain_length: The number of layers in the image rootfs.
    :param layer_store: The store holding the layer nodes.

    """
    layers = walk_layers(layer_store, top_layer, chain_length)
    manifest = assemble_manifest(
        config=config_descriptor(config, config_media_type),
        layers=canonical_order(layers),
    )
    payload = manifest.payload()
    logger.info(
        "Built manifest %s with %d layer(s)", manifest.descriptor.digest, len(layers)
    )
    return payload


def generate_manifest(
    reference: Reference | str,
    references: ReferenceStore,
    images: ImageStore,
    layers: LayerStore,
) -> bytes:
    """Return the serialized manifest of the image tagged `reference`"""
    if isinstance(reference, str):
        reference = Reference.from_string(reference)
    image_id = references.resolve(reference.repository, reference.tag)
    logger.info("Generating manifest for %s (%s)", reference, image_id)

    image = images.get(image_id)
    rootfs = rootfs_from_config(image.config)
    return build_manifest(
        config=image.config,
        config_media_type=MEDIA_TYPE_IMAGE_CONFIG,
        top_layer=image.top_layer,
        chain_length=len(rootfs.diff_ids),
        layer_store=layers,
    )


def write_manifest(payload: bytes, path: Path):
    """Write `payload` to `path`, the file is either complete or left untouched"""
    path = Path(path)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
        os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    logger.info("Manifest written to %s", path)
