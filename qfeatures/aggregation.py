"""
Aggregation of one assay into a new, linked assay.

Rows of the source assay are grouped by a row-data column and each group's
values are combined per sample with a reducer (see ``reducers``). The new
assay is added to the container together with an AssayLink mapping every
group row to the source rows it was computed from.

Grouping values may list several groups separated by ``sep`` (e.g. a
peptide shared between proteins "P1;P2"). Such a row contributes its full
values to every group it names; groups are not made exclusive.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable

import pandas as pd

from .assay import Assay
from .container import QFeatures
from .errors import MissingColumnError, NameCollisionError
from .links import AssayLink
from .reducers import get_reducer

logger = logging.getLogger(__name__)

# Row-data value used when the rows of a group disagree on a column
COLLAPSED = '<collapsed>'

# Row-data column recording how many source rows fed each group
N_FEATURES_COLUMN = 'n_features'


def _split_group_value(value, sep: str | None) -> list[str]:
    """Group keys named by one grouping value.

    Missing values and the COLLAPSED marker of an earlier aggregation name no
    group.
    """
    if isinstance(value, str) and value.strip() == COLLAPSED:
        return []
    if value is None or (not isinstance(value, (list, tuple, set)) and pd.isna(value)):
        return []
    if isinstance(value, (list, tuple, set)):
        parts = [str(v).strip() for v in value]
    elif sep is not None and isinstance(value, str):
        parts = [p.strip() for p in value.split(sep)]
    else:
        parts = [str(value).strip()]
    return list(dict.fromkeys(p for p in parts if p and p != COLLAPSED))


def group_memberships(
    row_data: pd.DataFrame,
    group_by: str,
    sep: str | None = ';',
) -> dict[str, list[str]]:
    """
    Map each group key to the row ids belonging to it.

    Groups are ordered by first appearance; rows keep their assay order
    within a group. Rows with a missing, empty or COLLAPSED grouping value join
    no group.

    Raises:
        MissingColumnError: If ``group_by`` is not a row-data column
    """
    if group_by not in row_data.columns:
        raise MissingColumnError(f"Grouping column '{group_by}' not found in row data")

    groups: dict[str, list[str]] = {}
    n_unassigned = 0
    for row_id, value in row_data[group_by].items():
        keys = _split_group_value(value, sep)
        if not keys:
            n_unassigned += 1
        for key in keys:
            groups.setdefault(key, []).append(row_id)

    if n_unassigned:
        logger.warning(f"{n_unassigned} rows have no '{group_by}' value and join no group")
    return groups


def adjacency_matrix(
    row_data: pd.DataFrame,
    group_by: str,
    sep: str | None = ';',
) -> pd.DataFrame:
    """
    Boolean rows x groups membership table.

    A row shared between groups (shared evidence) has several True entries.
    """
    groups = group_memberships(row_data, group_by, sep=sep)
    matrix = pd.DataFrame(False, index=row_data.index, columns=list(groups))
    for key, rows in groups.items():
        matrix.loc[rows, key] = True
    return matrix


def _summarize_row_data(
    row_data: pd.DataFrame,
    groups: dict[str, list[str]],
    group_by: str,
) -> pd.DataFrame:
    """Per-group metadata: uniform values are kept, others are COLLAPSED."""
    other_cols = [c for c in row_data.columns if c not in (group_by, N_FEATURES_COLUMN)]
    records = []
    for key, rows in groups.items():
        sub = row_data.loc[rows, other_cols]
        record = {group_by: key}
        for col in other_cols:
            values = sub[col]
            if values.nunique(dropna=False) <= 1:
                record[col] = values.iloc[0]
            else:
                record[col] = COLLAPSED
        record[N_FEATURES_COLUMN] = len(rows)
        records.append(record)

    columns = [group_by, *other_cols, N_FEATURES_COLUMN]
    summary = pd.DataFrame.from_records(records, columns=columns)
    summary.index = list(groups)
    return summary


def aggregate_features(
    container: QFeatures,
    source: str,
    group_by: str,
    name: str,
    fn: str | Callable = 'mean',
    sep: str | None = ';',
    **fn_kwargs,
) -> QFeatures:
    """
    Aggregate the rows of one assay into a new linked assay.

    Args:
        container: Container holding the source assay
        source: Name (or position) of the assay to aggregate
        group_by: Row-data column whose values define the groups
        name: Name of the new assay
        fn: Reducer name ('mean', 'sum', 'median', 'count', 'median_polish',
            'top_n'), which see the group's whole rows x samples matrix, or a
            callable applied to each sample's values separately and returning
            one number (e.g. ``np.median``)
        sep: Delimiter splitting multi-group values; None disables splitting
        **fn_kwargs: Extra arguments for the reducer (e.g. ``n`` for top_n)

    Returns:
        New container with the aggregated assay appended and linked to the
        source

    Raises:
        NotFoundError: If the source assay does not exist
        MissingColumnError: If ``group_by`` is absent from the source row data
        NameCollisionError: If ``name`` is already used
    """
    assay = container.get_assay(source)
    if not isinstance(source, str):
        source = container.names[source]
    row_data = assay.row_data
    if group_by not in row_data.columns:
        raise MissingColumnError(f"Grouping column '{group_by}' not found in assay '{source}'")
    if name in container:
        raise NameCollisionError(f"Assay '{name}' already exists")

    reducer = get_reducer(fn, **fn_kwargs)
    fn_name = fn if isinstance(fn, str) else getattr(fn, '__name__', 'custom')
    logger.info(f"Aggregating '{source}' by '{group_by}' into '{name}' using {fn_name}")

    groups = group_memberships(row_data, group_by, sep=sep)
    values = assay.values
    samples = values.columns

    combined = {}
    for key, rows in groups.items():
        result = reducer(values.loc[rows])
        if not isinstance(result, pd.Series) or set(result.index) != set(samples):
            raise ValueError(
                f"Reducer '{fn_name}' must return a Series indexed by the samples of "
                f"'{source}', got {type(result).__name__} for group '{key}'"
            )
        combined[key] = result.astype(float).reindex(samples)

    if combined:
        matrix = pd.DataFrame(list(combined.values()), index=list(combined)).reindex(columns=samples)
    else:
        matrix = pd.DataFrame(index=pd.Index([], dtype=object), columns=samples, dtype=float)

    new_assay = Assay(matrix, _summarize_row_data(row_data, groups, group_by))
    link = AssayLink(parent=source, child=name, mapping=groups)

    memberships = Counter(row_id for rows in groups.values() for row_id in rows)
    n_shared = sum(1 for count in memberships.values() if count > 1)
    logger.info(
        f"Aggregated {assay.n_rows} rows of '{source}' into {len(groups)} rows of '{name}'"
        + (f" ({n_shared} rows shared between groups)" if n_shared else "")
    )
    return container.add_assay(new_assay, name, link=link)
