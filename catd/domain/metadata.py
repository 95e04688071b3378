"""Build metadata reported by ``--metadata`` / ``--version``."""

import os
from dataclasses import dataclass
from importlib import metadata as importlib_metadata

DISTRIBUTION_NAME = "catd"
UNKNOWN = "none"
ZERO_MTIME = "0001-01-01T00:00:00Z"


@dataclass(frozen=True)
class BuildMetadata:
    """Immutable description of the running build."""

    name: str = DISTRIBUTION_NAME
    version: str = UNKNOWN
    commit: str = UNKNOWN
    mtime: str = ZERO_MTIME

    def render(self) -> str:
        """Return the multi-line text printed for ``--metadata``."""
        return (
            f"Name: {self.name}\n"
            f"Version: {self.version}\n"
            f"Commit: {self.commit}\n"
            f"MTime: {self.mtime}\n"
        )


def _installed_version() -> str:
    try:
        return importlib_metadata.version(DISTRIBUTION_NAME)
    except importlib_metadata.PackageNotFoundError:
        return UNKNOWN


def load_build_metadata() -> BuildMetadata:
    """Build metadata from the installed distribution and build environment."""
    return BuildMetadata(
        version=os.getenv("CATD_BUILD_VERSION") or _installed_version(),
        commit=os.getenv("CATD_BUILD_COMMIT", UNKNOWN),
        mtime=os.getenv("CATD_BUILD_MTIME", ZERO_MTIME),
    )
