"""
QFeatures container: linked assays sharing one sample metadata table.

The container holds an ordered mapping of assay name -> Assay, the shared
column (sample) metadata and the LinkGraph recording which rows of one assay
were computed from which rows of another. Every operation returns a new
container; the receiver is never modified.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping

import numpy as np
import pandas as pd

from .assay import Assay
from .errors import (
    DimensionError,
    MissingColumnError,
    NameCollisionError,
    NotFoundError,
    SchemaError,
)
from .links import AssayLink, LinkGraph

logger = logging.getLogger(__name__)


def _dtype_family(dtype) -> str:
    """Coarse type family used to decide whether two columns can be stacked."""
    if pd.api.types.is_bool_dtype(dtype):
        return 'bool'
    if pd.api.types.is_numeric_dtype(dtype):
        return 'numeric'
    if pd.api.types.is_datetime64_any_dtype(dtype):
        return 'datetime'
    return 'object'


class QFeatures:
    """
    Linked multi-assay container.

    Args:
        assays: Mapping of assay name -> Assay; insertion order is kept
        col_data: Sample metadata indexed by sample id. Defaults to an empty
            table over the union of the assays' sample ids.
        links: LinkGraph (or iterable of AssayLinks) between the assays

    Raises:
        SchemaError: If an assay uses a sample id absent from ``col_data`` or a
            link references unknown assays or rows
    """

    def __init__(
        self,
        assays: Mapping[str, Assay] | None = None,
        col_data: pd.DataFrame | None = None,
        links: LinkGraph | Iterable[AssayLink] | None = None,
    ):
        assays = dict(assays or {})
        for name, assay in assays.items():
            if not isinstance(assay, Assay):
                raise TypeError(f"Assay '{name}' must be an Assay, got {type(assay).__name__}")

        if col_data is None:
            samples = []
            for assay in assays.values():
                samples.extend(s for s in assay.sample_ids if s not in samples)
            col_data = pd.DataFrame(index=pd.Index(samples, dtype=object))
        else:
            col_data = pd.DataFrame(col_data).copy()
            col_data.index = col_data.index.astype(str)
            if not col_data.index.is_unique:
                dupes = col_data.index[col_data.index.duplicated()].unique().tolist()
                raise SchemaError(f"Duplicate sample ids in column data: {dupes[:5]}")
        col_data.index.name = None

        for name, assay in assays.items():
            self._check_samples(name, assay, col_data.index)

        if links is None:
            links = LinkGraph()
        elif not isinstance(links, LinkGraph):
            links = LinkGraph(links)
        for link in links:
            self._check_link(link, assays)

        self._assays = assays
        self._col_data = col_data
        self._links = links

    @staticmethod
    def _check_samples(name: str, assay: Assay, samples: pd.Index) -> None:
        unknown = [s for s in assay.sample_ids if s not in samples]
        if unknown:
            raise SchemaError(
                f"Assay '{name}' has sample ids not in the column data: {unknown[:5]}"
            )

    @staticmethod
    def _check_link(link: AssayLink, assays: Mapping[str, Assay]) -> None:
        for side in (link.parent, link.child):
            if side not in assays:
                raise SchemaError(f"Link {link.parent} -> {link.child}: unknown assay '{side}'")
        missing_child = link.child_ids - set(assays[link.child].row_ids)
        if missing_child:
            raise SchemaError(
                f"Link {link.parent} -> {link.child} references rows missing "
                f"from '{link.child}': {sorted(missing_child)[:5]}"
            )
        missing_parent = link.parent_ids - set(assays[link.parent].row_ids)
        if missing_parent:
            raise SchemaError(
                f"Link {link.parent} -> {link.child} references rows missing "
                f"from '{link.parent}': {sorted(missing_parent)[:5]}"
            )

    def _replace(self, assays=None, col_data=None, links=None) -> QFeatures:
        return QFeatures(
            assays=self._assays if assays is None else assays,
            col_data=self._col_data if col_data is None else col_data,
            links=self._links if links is None else links,
        )

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def names(self) -> list[str]:
        return list(self._assays)

    @property
    def links(self) -> LinkGraph:
        return self._links

    @property
    def col_data(self) -> pd.DataFrame:
        """Copy of the shared sample metadata."""
        return self._col_data.copy()

    @property
    def sample_ids(self) -> pd.Index:
        return self._col_data.index

    def __len__(self) -> int:
        return len(self._assays)

    def __iter__(self) -> Iterator[str]:
        return iter(self._assays)

    def __contains__(self, name) -> bool:
        return name in self._assays

    def __getitem__(self, key: str | int) -> Assay:
        return self.get_assay(key)

    def __repr__(self) -> str:
        desc = ", ".join(f"{k}({v.n_rows}x{v.n_samples})" for k, v in self._assays.items())
        return f"<QFeatures n_samples={len(self._col_data)}, assays=[{desc}]>"

    def get_assay(self, key: str | int) -> Assay:
        """Look up an assay by name or by position."""
        if isinstance(key, (int, np.integer)) and not isinstance(key, bool):
            names = self.names
            if -len(names) <= key < len(names):
                return self._assays[names[key]]
            raise NotFoundError(f"Assay index {key} out of range ({len(names)} assays)")
        if key not in self._assays:
            raise NotFoundError(f"Assay '{key}' not found; available: {self.names}")
        return self._assays[key]

    def dims(self) -> pd.DataFrame:
        """Rows and samples per assay."""
        return pd.DataFrame(
            {
                'n_rows': [a.n_rows for a in self._assays.values()],
                'n_samples': [a.n_samples for a in self._assays.values()],
            },
            index=self.names,
        )

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def add_assay(self, assay: Assay, name: str, link: AssayLink | None = None) -> QFeatures:
        """
        Return a container with ``assay`` appended under ``name``.

        Args:
            assay: Assay to add
            name: New, unused assay name
            link: Optional link recording the rows of an existing assay that
                the new assay's rows were computed from (``link.child`` must
                equal ``name``)

        Raises:
            NameCollisionError: If ``name`` is already used
            SchemaError: If the assay has samples unknown to the container or
                the link is inconsistent
        """
        if name in self._assays:
            raise NameCollisionError(f"Assay '{name}' already exists")
        self._check_samples(name, assay, self._col_data.index)

        assays = {**self._assays, name: assay}
        links = self._links
        if link is not None:
            if link.child != name:
                raise SchemaError(f"Link child '{link.child}' does not match new assay '{name}'")
            self._check_link(link, assays)
            links = links.with_link(link)

        logger.debug(f"Added assay '{name}' ({assay.n_rows} rows x {assay.n_samples} samples)")
        return self._replace(assays=assays, links=links)

    def link_assays(self, parent: str, child: str, by: str | None = None) -> QFeatures:
        """
        Record a link between two existing assays.

        Args:
            parent: Assay the child's rows derive from
            child: Assay being linked
            by: Row-data column present in both assays; each child row is
                linked to every parent row with the same value. If None,
                rows are linked one-to-one on shared row ids.

        Raises:
            NotFoundError: If either assay is unknown
            MissingColumnError: If ``by`` is absent from either assay
            SchemaError: If the child already has a parent or a cycle results
        """
        parent_assay = self.get_assay(parent)
        child_assay = self.get_assay(child)

        if by is None:
            shared = set(parent_assay.row_ids)
            mapping = {r: (r,) for r in child_assay.row_ids if r in shared}
        else:
            for name, assay in ((parent, parent_assay), (child, child_assay)):
                if by not in assay.row_data.columns:
                    raise MissingColumnError(f"Column '{by}' not found in assay '{name}'")
            parent_rows: dict = {}
            for row_id, value in parent_assay.row_data[by].items():
                if pd.notna(value):
                    parent_rows.setdefault(value, []).append(row_id)
            mapping = {}
            for row_id, value in child_assay.row_data[by].items():
                if pd.notna(value) and value in parent_rows:
                    mapping[row_id] = tuple(parent_rows[value])

        logger.info(f"Linked {len(mapping)} of {child_assay.n_rows} rows of '{child}' to '{parent}'")
        return self._replace(links=self._links.with_link(AssayLink(parent, child, mapping)))

    def select_assays(self, names: Iterable[str]) -> QFeatures:
        """Keep only the named assays (in container order) and their links."""
        names = list(names)
        for name in names:
            self.get_assay(name)
        dropped = [n for n in self.names if n not in names]
        assays = {n: a for n, a in self._assays.items() if n in names}
        links = self._links.without_assays(dropped)
        if len(links) < len(self._links):
            logger.warning(f"Dropped {len(self._links) - len(links)} links to removed assays")
        return self._replace(assays=assays, links=links)

    def subset_rows(self, selection: Mapping[str, Iterable[str]]) -> QFeatures:
        """
        Keep, for each named assay, only the given row ids.

        Assays not named in ``selection`` are unchanged. Links are restricted
        to the surviving rows of both endpoints.
        """
        selection = {name: set(map(str, ids)) for name, ids in selection.items()}
        assays = dict(self._assays)
        for name, ids in selection.items():
            assays[name] = self.get_assay(name).subset_rows(ids)
        row_ids = {name: set(assays[name].row_ids) for name in selection}
        return self._replace(assays=assays, links=self._links.restrict(row_ids))

    def subset_samples(self, sample_ids: Iterable[str]) -> QFeatures:
        """
        Keep only the given samples in every assay and in the column data.

        Raises:
            NotFoundError: If a sample id is unknown to the container
        """
        sample_ids = [str(s) for s in sample_ids]
        unknown = [s for s in sample_ids if s not in self._col_data.index]
        if unknown:
            raise NotFoundError(f"Unknown sample ids: {unknown}")
        assays = {
            name: assay.select_samples([s for s in sample_ids if s in assay.sample_ids])
            for name, assay in self._assays.items()
        }
        return self._replace(assays=assays, col_data=self._col_data.loc[sample_ids])

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def set_col_data(self, table: pd.DataFrame) -> QFeatures:
        """
        Replace the shared sample metadata.

        Raises:
            DimensionError: If the table's sample ids differ from the union of
                the assays' sample ids
        """
        table = pd.DataFrame(table).copy()
        table.index = table.index.astype(str)
        used = set()
        for assay in self._assays.values():
            used.update(assay.sample_ids)
        if set(table.index) != used or not table.index.is_unique:
            raise DimensionError(
                f"Column data samples do not match the assays: "
                f"missing {sorted(used - set(table.index))[:5]}, "
                f"unexpected {sorted(set(table.index) - used)[:5]}"
            )
        return self._replace(col_data=table)

    def row_data(self, names: Iterable[str] | None = None) -> dict[str, pd.DataFrame]:
        """Row metadata per assay (all assays by default)."""
        names = self.names if names is None else list(names)
        return {name: self.get_assay(name).row_data for name in names}

    def set_row_data(self, updates: Mapping[str, pd.DataFrame]) -> QFeatures:
        """
        Left-join partial row metadata onto the named assays.

        Columns in an update overwrite existing columns of the same name and
        new columns are added. Rows absent from the update keep their values
        (new columns are missing for them). Update rows whose id is not in the
        assay are ignored.

        Raises:
            NotFoundError: For unknown assay names
            DimensionError: If an update repeats a row id, which would change
                the assay's row count
        """
        assays = dict(self._assays)
        for name, table in updates.items():
            assay = self.get_assay(name)
            table = pd.DataFrame(table).copy()
            table.index = table.index.astype(str)
            if not table.index.is_unique:
                raise DimensionError(f"Row data update for '{name}' has duplicate row ids")
            unmatched = ~table.index.isin(assay.row_ids)
            if unmatched.any():
                logger.warning(
                    f"Row data update for '{name}': {int(unmatched.sum())} row ids not in "
                    f"the assay were ignored: {table.index[unmatched][:5].tolist()}"
                )
                table = table.loc[~unmatched]
            row_data = assay.row_data
            for column in table.columns:
                if column in row_data.columns:
                    merged = row_data[column].astype(object)
                    merged.loc[table.index] = table[column].astype(object)
                    row_data[column] = merged.infer_objects()
                else:
                    row_data[column] = table[column].reindex(row_data.index)
            assays[name] = assay.with_row_data(row_data)
        return self._replace(assays=assays)

    def combine_row_data(self, names: Iterable[str] | None = None) -> pd.DataFrame:
        """
        Stack row metadata of several assays.

        Only columns present in every named assay with a compatible type are
        kept. The result has an ``assay`` column naming the source and a
        ``feature_id`` column with the row id.
        """
        names = self.names if names is None else list(names)
        tables = [self.get_assay(name).row_data for name in names]
        if not tables:
            return pd.DataFrame(columns=['assay', 'feature_id'])

        common = [c for c in tables[0].columns if all(c in t.columns for t in tables[1:])]
        common = [
            c for c in common
            if len({_dtype_family(t[c].dtype) for t in tables if len(t)}) <= 1
        ]
        for c in tables[0].columns:
            if c not in common:
                logger.debug(f"Column '{c}' not shared by all of {names}; skipped")

        frames = []
        for name, table in zip(names, tables):
            frame = table[common].copy()
            frame.insert(0, 'feature_id', frame.index)
            frame.insert(0, 'assay', name)
            frames.append(frame)
        return pd.concat(frames, ignore_index=True)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def long_form(
        self,
        names: Iterable[str] | None = None,
        row_vars: Iterable[str] | None = None,
        col_vars: Iterable[str] | None = None,
    ) -> pd.DataFrame:
        """
        One row per (assay, feature, sample) value.

        Args:
            names: Assays to include (all by default)
            row_vars: Row-data columns to attach; assays lacking one get
                missing values
            col_vars: Column-data columns to attach

        Returns:
            DataFrame with columns assay, feature_id, sample, value followed by
            the requested row and column variables
        """
        names = self.names if names is None else list(names)
        row_vars = list(row_vars or [])
        col_vars = list(col_vars or [])
        missing = [c for c in col_vars if c not in self._col_data.columns]
        if missing:
            raise MissingColumnError(f"Column data has no columns {missing}")

        frames = []
        for name in names:
            assay = self.get_assay(name)
            values = assay.values
            values.index.name = 'feature_id'
            frame = values.reset_index().melt(
                id_vars='feature_id', var_name='sample', value_name='value'
            )
            frame.insert(0, 'assay', name)
            row_data = assay.row_data
            for var in row_vars:
                if var in row_data.columns:
                    frame[var] = frame['feature_id'].map(row_data[var]).values
                else:
                    frame[var] = np.nan
            frames.append(frame)

        columns = ['assay', 'feature_id', 'sample', 'value', *row_vars]
        if not frames:
            result = pd.DataFrame(columns=columns)
        else:
            result = pd.concat(frames, ignore_index=True)[columns]
        for var in col_vars:
            result[var] = result['sample'].map(self._col_data[var]).values
        return result
