import logging
from dataclasses import dataclass

from pymanifest.oci.errors import InvalidReference

logger = logging.getLogger(__name__)

DEFAULT_TAG = "latest"
DOCKER_HUB_DOMAINS = ("docker.io", "index.docker.io", "registry-1.docker.io")
OFFICIAL_NAMESPACE = "library"


def familiar_name(repository: str) -> str:
    """Return the short Docker Hub form of a repository name

    'docker.io/library/hello-world' and 'library/hello-world' both become 'hello-world',
    repositories on other registries are returned unchanged.
    """
    domain, sep, remainder = repository.partition("/")
    if sep and domain in DOCKER_HUB_DOMAINS:
        repository = remainder
    namespace, sep, name = repository.partition("/")
    if sep and namespace == OFFICIAL_NAMESPACE and "/" not in name:
        repository = name
    return repository


@dataclass(frozen=True, slots=True)
class Reference:
    """Image reference in the form '[registry[:port]/]repository[:tag]'"""

    repository: str
    tag: str = DEFAULT_TAG

    def __str__(self):
        return f"{self.repository}:{self.tag}"

    def familiar(self) -> "Reference":
        """Return the reference with its repository in the short Docker Hub form"""
        return Reference(repository=familiar_name(self.repository), tag=self.tag)

    @classmethod
    def from_string(cls, value: str) -> "Reference":
        """Parse a reference string

        The tag is whatever follows the last ':', unless that part contains a '/'
        in which case the ':' separates a registry host from its port.
        """
        repository, sep, tag = value.rpartition(":")
        if not sep or "/" in tag:
            logger.debug("No tag in '%s', using '%s'", value, DEFAULT_TAG)
            repository, tag = value, DEFAULT_TAG
        if not repository or not tag:
            raise InvalidReference(f"invalid reference: {value!r}")
        return cls(repository=repository, tag=tag)
