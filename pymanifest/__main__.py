import logging
import logging.config
from pathlib import Path

import click

import pymanifest.oci
from pymanifest.oci.archive import ArchiveStore
from pymanifest.oci.compress import open_layer_stream
from pymanifest.oci.descriptor import (
    MEDIA_TYPE_LAYER,
    MEDIA_TYPE_UNCOMPRESSED_LAYER,
    Descriptor,
)
from pymanifest.oci.digest import compute_digest
from pymanifest.oci.errors import ManifestError, retry

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "default": {
            "formatter": "default",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
        },
    },
    "loggers": {
        "pymanifest": {"handlers": ["default"], "level": "INFO", "propagate": False},
    },
}


def configure_logging(debug: bool = False):
    logging.config.dictConfig(LOGGING_CONFIG)
    if debug:
        logging.getLogger("pymanifest").setLevel(logging.DEBUG)


@click.group()
@click.option("-d", "--debug", help="Debug output", is_flag=True)
def cli(debug: bool):
    configure_logging(debug=debug)


@cli.command()
@click.argument("reference")
@click.option(
    "-a",
    "--archive",
    help="Image archive as written by 'docker save', or the directory it was extracted to",
    envvar="PYMANIFEST_ARCHIVE",
    required=True,
    type=click.Path(exists=True, path_type=Path),
)
@click.option(
    "-o",
    "--output",
    help="Output file, stdout when omitted",
    envvar="PYMANIFEST_OUTPUT",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
)
@click.option(
    "--retries",
    help="Attempts for transient read failures",
    envvar="PYMANIFEST_RETRIES",
    default=1,
    show_default=True,
    type=click.IntRange(min=1),
)
def generate(reference: str, archive: Path, output: Path | None, retries: int):
    """Generate the manifest of the image tagged REFERENCE."""
    with ArchiveStore(archive) as store:
        try:
            payload = retry(
                lambda: pymanifest.oci.generate_manifest(
                    reference, references=store, images=store, layers=store
                ),
                attempts=retries,
            )
        except ManifestError as e:
            raise click.ClickException(f"{e} ({e.kind.value})") from e
    if output is None:
        click.echo(payload, nl=False)
        return
    pymanifest.oci.write_manifest(payload, output)
    click.echo(f"Manifest written to: {output}", err=True)


@cli.command()
@click.argument(
    "path", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.option("--compress", help="Describe the gzip compressed layer", is_flag=True)
def digest(path: Path, compress: bool):
    """Print the descriptor of a single file."""
    media_type = "application/octet-stream"
    with path.open("rb") as f:
        try:
            if compress:
                stream, done = open_layer_stream(MEDIA_TYPE_UNCOMPRESSED_LAYER, f)
                try:
                    size, digest = compute_digest(stream)
                finally:
                    stream.close()
                    done.wait()
                media_type = MEDIA_TYPE_LAYER
            else:
                size, digest = compute_digest(f)
        except ManifestError as e:
            raise click.ClickException(str(e)) from e
    descriptor = Descriptor(mediaType=media_type, size=size, digest=digest)
    click.echo(descriptor.model_dump_json(exclude_none=True))


if __name__ == "__main__":
    cli()
