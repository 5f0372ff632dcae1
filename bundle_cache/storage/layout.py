"""
Resolves the on-disk layout of the bundle cache:
<root>/<family>/v<version>/<release>/<family>-<network>.{car,sha256}
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from bundle_cache.exceptions import FilesystemError
from bundle_cache.models.identity import BundleIdentity

log = logging.getLogger(__name__)

BUNDLE_EXTENSION = "car"
DIGEST_EXTENSION = "sha256"
DIR_MODE = 0o755


def create_dir(directory_path: Path) -> None:
    """Creates a directory (and parents) if it does not already exist."""
    try:
        directory_path.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
    except OSError as e:
        raise FilesystemError(
            f"error making bundle directory {directory_path}: {e}"
        ) from e


@dataclass(frozen=True)
class BundlePaths:
    """The resolved names and locations of one cached bundle entry."""

    bundle_name: str
    directory: Path
    bundle_file: str
    digest_file: str

    @property
    def bundle_path(self) -> Path:
        return self.directory / self.bundle_file

    @property
    def digest_path(self) -> Path:
        return self.directory / self.digest_file


class BundleLayout:
    """Maps bundle identities to paths under a family directory."""

    def __init__(self, base_dir: Path, family: str):
        self.family = family
        self.root = Path(base_dir) / family

    def ensure_root(self) -> Path:
        create_dir(self.root)
        return self.root

    def resolve(self, identity: BundleIdentity) -> BundlePaths:
        """Computes the paths for an identity without touching the filesystem."""
        bundle_name = f"{self.family}-{identity.network}"
        return BundlePaths(
            bundle_name=bundle_name,
            directory=self.root / f"v{identity.version}" / identity.release,
            bundle_file=f"{bundle_name}.{BUNDLE_EXTENSION}",
            digest_file=f"{bundle_name}.{DIGEST_EXTENSION}",
        )

    def prepare(self, identity: BundleIdentity) -> BundlePaths:
        """Resolves the paths for an identity and creates its versioned directory."""
        paths = self.resolve(identity)
        create_dir(paths.directory)
        log.debug(f"Prepared bundle directory {paths.directory}")
        return paths
