import logging
from typing import Any, Sequence, TypeVar

from pymanifest.oci.compress import open_layer_stream
from pymanifest.oci.descriptor import MEDIA_TYPE_LAYER, Descriptor
from pymanifest.oci.digest import compute_digest
from pymanifest.oci.errors import ChainLengthMismatch, ReadFailure
from pymanifest.oci.store import LayerStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def layer_descriptor(store: LayerStore, node: Any) -> Descriptor:
    """Return the descriptor of the compressed form of a single layer"""
    try:
        with store.open(node) as source:
            stream, compressed = open_layer_stream(store.media_type(node), source)
            try:
                size, digest = compute_digest(stream)
            finally:
                if compressed is not None:
                    # The compressor reads from `source` until it is done
                    stream.close()
                    compressed.wait()
    except OSError as e:
        raise ReadFailure.from_error(e) from e
    return Descriptor(mediaType=MEDIA_TYPE_LAYER, size=size, digest=digest)


def walk_layers(store: LayerStore, top: Any, chain_length: int) -> list[Descriptor]:
    """Return one descriptor per layer, starting at `top` towards the base

    Exactly `chain_length` layers are walked, reaching the base layer
    before that raises ChainLengthMismatch.
    """
    descriptors = []
    node = top
    for hop in range(chain_length):
        if node is None:
            raise ChainLengthMismatch(
                f"rootfs declares {chain_length} layers, "
                f"the layer store only holds {hop}"
            )
        descriptor = layer_descriptor(store, node)
        logger.debug(
            "Layer %s: %s (%d bytes)",
            store.content_id(node),
            descriptor.digest,
            descriptor.size,
        )
        descriptors.append(descriptor)
        node = store.parent(node)
    return descriptors


def canonical_order(descriptors: Sequence[T]) -> list[T]:
    """Reorder layers discovered top to base into base to top order"""
    return list(reversed(descriptors))
