import gzip
import hashlib
import io
import json
import tarfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import pytest

from pymanifest.oci.compress import COMPRESS_LEVEL
from pymanifest.oci.descriptor import MEDIA_TYPE_UNCOMPRESSED_LAYER


def sha256_digest(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def reference_gzip(data: bytes) -> bytes:
    """Compress `data` in one go, the way the layer compressor is configured"""
    buf = io.BytesIO()
    with gzip.GzipFile(
        filename="", mode="wb", fileobj=buf, compresslevel=COMPRESS_LEVEL, mtime=0
    ) as f:
        f.write(data)
    return buf.getvalue()


def make_tar(files: dict[str, bytes]) -> bytes:
    """Return an uncompressed tarball holding `files`"""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))
    return buf.getvalue()


class BrokenStream(io.RawIOBase):
    """Returns `data` and then fails like a disconnected disk"""

    def __init__(self, data: bytes = b"", error: Exception | None = None):
        self._data = io.BytesIO(data)
        self._error = error or OSError("device not ready")

    def readable(self):
        return True

    def readinto(self, buffer):
        n = self._data.readinto(buffer)
        if n == 0:
            raise self._error
        return n


@dataclass(frozen=True, eq=False)
class FakeLayer:
    name: str
    content: bytes
    media_type: str = MEDIA_TYPE_UNCOMPRESSED_LAYER
    parent: "FakeLayer | None" = None
    broken: bool = False


class FakeLayerStore:
    """In-memory layer store recording which layers were opened and released"""

    def __init__(self):
        self.opened = []
        self.released = []

    @contextmanager
    def open(self, node: FakeLayer):
        self.opened.append(node.name)
        stream = BrokenStream(node.content) if node.broken else io.BytesIO(node.content)
        try:
            yield stream
        finally:
            stream.close()
            self.released.append(node.name)

    def parent(self, node: FakeLayer):
        return node.parent

    def media_type(self, node: FakeLayer) -> str:
        return node.media_type

    def content_id(self, node: FakeLayer) -> str:
        return node.name


def layer_chain(*layers: FakeLayer) -> FakeLayer | None:
    """Link `layers`, given base to top, and return the top layer"""
    top = None
    for layer in layers:
        top = FakeLayer(
            name=layer.name,
            content=layer.content,
            media_type=layer.media_type,
            parent=top,
            broken=layer.broken,
        )
    return top


@pytest.fixture
def layer_store() -> FakeLayerStore:
    return FakeLayerStore()


def image_config(diff_ids: list[str]) -> bytes:
    return json.dumps(
        {
            "architecture": "amd64",
            "os": "linux",
            "config": {"Cmd": ["/hello"]},
            "rootfs": {"type": "layers", "diff_ids": diff_ids},
        },
        separators=(",", ":"),
    ).encode("utf-8")


@dataclass
class SavedImage:
    path: Path
    config: bytes
    layers: list[bytes]


def write_saved_image(
    root: Path, layers: list[bytes], repo_tags: list[str], as_tarball: bool = True
) -> SavedImage:
    """Write a `docker save` style archive with the `layers` ordered base to top"""
    config = image_config([sha256_digest(layer) for layer in layers])
    config_name = f"{hashlib.sha256(config).hexdigest()}.json"
    files = {config_name: config}
    layer_names = []
    for idx, layer in enumerate(layers):
        name = f"layer{idx}/layer.tar"
        files[name] = layer
        layer_names.append(name)
    files["manifest.json"] = json.dumps(
        [{"Config": config_name, "RepoTags": repo_tags, "Layers": layer_names}]
    ).encode("utf-8")

    if as_tarball:
        path = root / "image.tar"
        path.write_bytes(make_tar(files))
    else:
        path = root / "image"
        for name, content in files.items():
            (path / name).parent.mkdir(parents=True, exist_ok=True)
            (path / name).write_bytes(content)
    return SavedImage(path=path, config=config, layers=layers)


@pytest.fixture
def saved_image(tmp_path) -> SavedImage:
    """Archive of a three layer image tagged 'example/app:1.0'"""
    layers = [
        make_tar({"bin/hello": b"hello world\n" * 100}),
        make_tar({"etc/motd": b"base"}),
        make_tar({"app/data": bytes(range(256)) * 64}),
    ]
    return write_saved_image(tmp_path, layers, repo_tags=["example/app:1.0"])
