"""Base exception shared by all pkgmatch components.

Concrete errors live beside the code that raises them and derive from
``PkgMatchError`` so the CLI can separate expected failures from bugs.
"""


class PkgMatchError(Exception):
    """Base class for expected, reportable failures."""


class NotFoundError(PkgMatchError):
    """An input the caller expected on disk does not exist."""


class MalformedInputError(PkgMatchError):
    """An input exists but could not be parsed."""
