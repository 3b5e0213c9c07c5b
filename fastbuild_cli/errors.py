"""Exception taxonomy for FastBuild.

Components raise these internally and catch them at their own boundary,
reporting through the output sink and returning a failure sentinel.
File-system failures are left as the built-in ``OSError``.
"""

from __future__ import annotations


class FastBuildError(Exception):
    """Base class for all FastBuild errors."""


class ConfigurationError(FastBuildError):
    """Missing or invalid workspace configuration, or unmet minimum version."""


class ParseError(FastBuildError):
    """A build descriptor or project manifest could not be parsed."""


class DependencyResolutionError(FastBuildError):
    """An SDK version pin or its entry-point file could not be resolved."""

