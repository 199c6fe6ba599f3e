"""Data I/O module: building containers from flat tables and exporting them."""

import logging
import re
from pathlib import Path
from typing import Optional, Union

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from .assay import Assay
from .container import QFeatures
from .errors import MissingColumnError, SchemaError

logger = logging.getLogger(__name__)

PARQUET_SUFFIXES = {'.parquet', '.pq'}


def _detect_separator(filepath: Path) -> str:
    """Tab for .tsv/.txt files, comma otherwise."""
    return '\t' if filepath.suffix.lower() in ['.tsv', '.txt'] else ','


def read_table(filepath: Path) -> pd.DataFrame:
    """Read a CSV/TSV/TXT or Parquet table.

    Args:
        filepath: Path to the table

    Returns:
        DataFrame with the file contents

    """
    filepath = Path(filepath)
    if filepath.suffix.lower() in PARQUET_SUFFIXES:
        return pq.read_table(filepath).to_pandas()
    return pd.read_csv(filepath, sep=_detect_separator(filepath))


def _select_quant_columns(df: pd.DataFrame, quant_cols: Union[list, str]) -> list[str]:
    """Resolve quantitation columns from a list of names or a regex."""
    if isinstance(quant_cols, str):
        pattern = re.compile(quant_cols)
        selected = [c for c in df.columns if pattern.search(str(c))]
        if not selected:
            raise MissingColumnError(f"No columns match quantitation pattern {quant_cols!r}")
        return selected

    selected = list(quant_cols)
    missing = [c for c in selected if c not in df.columns]
    if missing:
        raise MissingColumnError(f"Missing quantitation columns: {missing}")
    return selected


def read_features(
    source: Union[pd.DataFrame, Path, str],
    quant_cols: Union[list, str],
    name: str = 'psms',
    row_id_col: Optional[str] = None,
    col_data: Optional[pd.DataFrame] = None,
) -> QFeatures:
    """Build a one-assay container from a flat table.

    The quantitation columns become the assay's sample columns; every other
    column becomes row metadata.

    Args:
        source: DataFrame, or path to a CSV/TSV/TXT/Parquet file
        quant_cols: List of quantitation column names, or a regular
            expression selecting them
        name: Name of the assay
        row_id_col: Column holding unique row ids. If None, ids are
            generated as ``{name}_1``, ``{name}_2``, ...
        col_data: Sample metadata indexed by sample id (quantitation column
            name). Defaults to an empty table.

    Returns:
        QFeatures container holding the single assay

    Raises:
        MissingColumnError: If quantitation or row id columns are missing
        SchemaError: If row ids are not unique or col_data misses samples

    """
    if isinstance(source, pd.DataFrame):
        df = source.copy()
        origin = 'DataFrame'
    else:
        df = read_table(Path(source))
        origin = Path(source).name

    quant = _select_quant_columns(df, quant_cols)

    if row_id_col is not None:
        if row_id_col not in df.columns:
            raise MissingColumnError(f"Row id column '{row_id_col}' not found")
        ids = df[row_id_col].astype(str)
        if ids.duplicated().any():
            dupes = ids[ids.duplicated()].unique().tolist()
            raise SchemaError(f"Row id column '{row_id_col}' has duplicates: {dupes[:5]}")
        df.index = ids.values
    else:
        df.index = [f"{name}_{i + 1}" for i in range(len(df))]

    values = df[quant]
    row_data = df.drop(columns=quant)

    if col_data is None:
        col_data = pd.DataFrame(index=pd.Index([str(c) for c in quant], dtype=object))

    container = QFeatures({name: Assay(values, row_data)}, col_data=col_data)
    logger.info(
        f"Read {len(df)} rows x {len(quant)} samples from {origin} into assay '{name}' "
        f"({row_data.shape[1]} row variables)"
    )
    return container


def load_sample_metadata(filepath: Path, sample_col: str = 'sample') -> pd.DataFrame:
    """Load and validate a sample metadata file.

    Args:
        filepath: Path to metadata TSV/CSV/Parquet
        sample_col: Column holding sample ids (quantitation column names)

    Returns:
        Metadata DataFrame indexed by sample id

    Raises:
        ValueError: If the sample column is missing or has duplicates

    """
    meta = read_table(Path(filepath))

    if sample_col not in meta.columns:
        raise ValueError(f"Missing required metadata column: {sample_col}")

    duplicates = meta[meta[sample_col].duplicated()][sample_col].tolist()
    if duplicates:
        raise ValueError(f"Duplicate {sample_col} entries: {duplicates}")

    meta[sample_col] = meta[sample_col].astype(str)
    return meta.set_index(sample_col)


def _to_text(value):
    if isinstance(value, str):
        return value
    return None if pd.isna(value) else str(value)


def export_long_form(
    container: QFeatures,
    output_path: Path,
    names: Optional[list] = None,
    row_vars: Optional[list] = None,
    col_vars: Optional[list] = None,
) -> Path:
    """Write the container's long-form table to Parquet, CSV or TSV.

    The format follows the file suffix (.parquet/.pq, .tsv/.txt, else CSV).

    Returns:
        The path written

    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    long = container.long_form(names=names, row_vars=row_vars, col_vars=col_vars)

    if output_path.suffix.lower() in PARQUET_SUFFIXES:
        # mixed-type row variables (e.g. collapsed markers) are written as strings
        for col in long.columns:
            if long[col].dtype == object:
                long[col] = long[col].map(_to_text)
        table = pa.Table.from_pandas(long, preserve_index=False)
        pq.write_table(table, output_path, compression='zstd')
    else:
        long.to_csv(output_path, sep=_detect_separator(output_path), index=False)

    logger.info(f"Wrote {len(long)} long-form rows to {output_path}")
    return output_path
