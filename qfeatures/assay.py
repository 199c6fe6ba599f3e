"""Assay value type: one quantitative matrix with its row metadata."""

from __future__ import annotations

import logging
from collections.abc import Iterable

import pandas as pd

from .errors import DimensionError, NotFoundError, SchemaError

logger = logging.getLogger(__name__)


class Assay:
    """
    Quantitative matrix (features x samples) plus per-feature metadata.

    Row ids are taken from the matrix index and must be unique; they are
    stored as strings. ``row_data`` holds one row per feature with the same ids
    in the same order as the matrix. Columns are sample identifiers.

    An Assay is never modified after construction. Accessors return copies and
    every method that changes rows, samples or metadata returns a new Assay, so
    one instance can be shared between containers safely.
    """

    def __init__(self, values: pd.DataFrame, row_data: pd.DataFrame | None = None):
        values = pd.DataFrame(values).copy()
        values.index = values.index.astype(str)
        values.columns = values.columns.astype(str)
        values.index.name = None
        values.columns.name = None

        if not values.index.is_unique:
            dupes = values.index[values.index.duplicated()].unique().tolist()
            raise SchemaError(f"Row ids are not unique: {dupes[:5]}")
        if not values.columns.is_unique:
            dupes = values.columns[values.columns.duplicated()].unique().tolist()
            raise SchemaError(f"Sample ids are not unique: {dupes[:5]}")

        try:
            values = values.astype(float)
        except (TypeError, ValueError) as e:
            raise SchemaError(f"Assay values must be numeric: {e}") from e

        if row_data is None:
            row_data = pd.DataFrame(index=values.index)
        else:
            row_data = pd.DataFrame(row_data).copy()
            row_data.index = row_data.index.astype(str)
            if (
                len(row_data) != len(values)
                or not row_data.index.is_unique
                or set(row_data.index) != set(values.index)
            ):
                raise DimensionError(
                    f"Row data ({len(row_data)} rows) does not match the "
                    f"assay rows ({len(values)} rows)"
                )
            row_data = row_data.reindex(values.index)
        row_data.index.name = None

        self._values = values
        self._row_data = row_data

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def values(self) -> pd.DataFrame:
        """Copy of the features x samples matrix."""
        return self._values.copy()

    @property
    def row_data(self) -> pd.DataFrame:
        """Copy of the per-feature metadata, indexed by row id."""
        return self._row_data.copy()

    @property
    def row_ids(self) -> pd.Index:
        return self._values.index

    @property
    def sample_ids(self) -> pd.Index:
        return self._values.columns

    @property
    def n_rows(self) -> int:
        return self._values.shape[0]

    @property
    def n_samples(self) -> int:
        return self._values.shape[1]

    @property
    def shape(self) -> tuple[int, int]:
        return self._values.shape

    def __len__(self) -> int:
        return self.n_rows

    def __repr__(self) -> str:
        return (
            f"<Assay n_rows={self.n_rows}, n_samples={self.n_samples}, "
            f"row_vars={list(self._row_data.columns)}>"
        )

    def equals(self, other: Assay) -> bool:
        """True if both matrix and row metadata are identical."""
        return (
            isinstance(other, Assay)
            and self._values.equals(other._values)
            and self._row_data.equals(other._row_data)
        )

    # ------------------------------------------------------------------
    # Derived assays
    # ------------------------------------------------------------------

    def subset_rows(self, row_ids: Iterable[str]) -> Assay:
        """
        Keep only the given rows, in this assay's existing order.

        Ids not present in the assay are ignored.
        """
        keep = self._values.index.isin([str(r) for r in row_ids])
        return Assay(self._values.loc[keep], self._row_data.loc[keep])

    def select_samples(self, sample_ids: Iterable[str]) -> Assay:
        """Keep only the given sample columns, in the order given."""
        sample_ids = [str(s) for s in sample_ids]
        missing = [s for s in sample_ids if s not in self._values.columns]
        if missing:
            raise NotFoundError(f"Unknown sample ids: {missing}")
        return Assay(self._values[sample_ids], self._row_data)

    def with_row_data(self, row_data: pd.DataFrame) -> Assay:
        """Return a copy of this assay with its row metadata replaced."""
        return Assay(self._values, row_data)
