"""
The identity triple that determines where a bundle lives on disk and on the origin.
"""

from dataclasses import dataclass

_FORBIDDEN_SEGMENTS = {"", ".", ".."}


def _check_segment(name: str, value: str) -> None:
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string, got {type(value).__name__}.")
    if value in _FORBIDDEN_SEGMENTS or "/" in value or "\\" in value:
        raise ValueError(f"Invalid {name} {value!r}: must be a single path segment.")


@dataclass(frozen=True)
class BundleIdentity:
    """
    A (version, release, network) triple.

    Instances are hashable, so they double as keys for per-bundle locks.
    """

    version: int
    release: str
    network: str

    def __post_init__(self):
        if isinstance(self.version, bool) or not isinstance(self.version, int):
            raise TypeError(
                f"version must be an integer, got {type(self.version).__name__}."
            )
        if self.version < 0:
            raise ValueError(f"version must be non-negative, got {self.version}.")
        _check_segment("release", self.release)
        _check_segment("network", self.network)

    def __str__(self) -> str:
        return f"v{self.version}/{self.release}/{self.network}"
