"""FastBuild CLI: incremental native/managed monorepo builds driven by a single changed path."""

__version__ = "1.4.0"
