"""Exception hierarchy for qfeatures.

Each error is raised synchronously by the operation that detects it. No
operation leaves a partially updated container behind: validation happens
before the new container is built.
"""

from __future__ import annotations


class QFeaturesError(Exception):
    """Base exception for all qfeatures failures."""


class NotFoundError(QFeaturesError, KeyError):
    """Raised for an unknown assay name, feature id or sample id."""

    def __str__(self) -> str:
        # KeyError quotes its message; keep it readable
        return str(self.args[0]) if self.args else ''


class NameCollisionError(QFeaturesError, ValueError):
    """Raised when an assay name is already used in the container."""


class SchemaError(QFeaturesError, ValueError):
    """Raised for column/sample identity mismatches or invalid links."""


class MissingColumnError(QFeaturesError, ValueError):
    """Raised when a required row-data column is absent from an assay."""


class DimensionError(QFeaturesError, ValueError):
    """Raised when metadata rows do not line up with the data they describe."""
