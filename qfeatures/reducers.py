"""
Reduction functions used to combine the rows of one aggregation group.

Every reducer takes a rows x samples DataFrame (the group's values) and
returns a Series indexed by sample. Reducers must give the same result for
the same multiset of rows regardless of row order.

Supports:
- Column-wise summaries: mean, sum, median, count of non-missing values
- Tukey median polish (robust to outlier rows)
- Top-N: average of the N most intense rows per sample
- Any caller-supplied function of one sample's values (``per_sample``)
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

Reducer = Callable[[pd.DataFrame], pd.Series]


@dataclass
class MedianPolishResult:
    """
    Result of Tukey median polish.

    The residuals matrix captures deviations from the additive model:
        y_ij = μ + α_i + β_j + ε_ij
    """
    overall: float                    # Grand effect (μ)
    row_effects: pd.Series            # Row effects (α)
    col_effects: pd.Series            # Sample effects (β)
    residuals: pd.DataFrame           # Residual matrix (rows × samples)
    n_iterations: int
    converged: bool


def tukey_median_polish(
    matrix: pd.DataFrame,
    max_iter: int = 10,
    tol: float = 1e-4,
) -> MedianPolishResult:
    """
    Apply Tukey's median polish to a rows × samples matrix.

    Model: y_ij = μ + α_i + β_j + ε_ij

    Where:
        - μ = overall effect (grand median)
        - α_i = row effect
        - β_j = column/sample effect
        - ε_ij = residual

    Args:
        matrix: DataFrame with features as rows, samples as columns.
                Values are usually log2 transformed.
        max_iter: Maximum number of iterations
        tol: Convergence tolerance (max absolute change in residuals)

    Returns:
        MedianPolishResult with effects and residuals
    """
    row_idx = matrix.index
    col_idx = matrix.columns

    residuals = matrix.values.copy().astype(float)
    overall = 0.0
    row_effects = np.zeros(len(row_idx))
    col_effects = np.zeros(len(col_idx))

    converged = False
    iteration = 0

    for iteration in range(max_iter):
        old_residuals = residuals.copy()

        # Row sweep
        row_medians = _nan_median(residuals, axis=1)
        residuals = residuals - row_medians[:, np.newaxis]
        row_center = _nan_median(row_medians)
        row_effects += row_medians - row_center
        overall += row_center

        # Column sweep
        col_medians = _nan_median(residuals, axis=0)
        residuals = residuals - col_medians[np.newaxis, :]
        col_center = _nan_median(col_medians)
        col_effects += col_medians - col_center
        overall += col_center

        change = np.abs(residuals - old_residuals)
        max_change = np.nanmax(change) if np.isfinite(change).any() else 0.0
        if max_change < tol:
            converged = True
            break

    if not converged:
        logger.warning(f"Median polish did not converge after {max_iter} iterations")

    return MedianPolishResult(
        overall=float(overall),
        row_effects=pd.Series(row_effects, index=row_idx, name='row_effect'),
        col_effects=pd.Series(col_effects, index=col_idx, name='col_effect'),
        residuals=pd.DataFrame(residuals, index=row_idx, columns=col_idx),
        n_iterations=iteration + 1,
        converged=converged,
    )


def _nan_median(values: np.ndarray, axis: int | None = None):
    """NaN-ignoring median; all-missing slices count as 0."""
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', category=RuntimeWarning)
        med = np.nanmedian(values, axis=axis)
    return np.nan_to_num(med, nan=0.0)


# ============================================================================
# Reducers
# ============================================================================

def col_means(matrix: pd.DataFrame) -> pd.Series:
    """Mean of non-missing values per sample."""
    return matrix.mean(axis=0, skipna=True)


def col_sums(matrix: pd.DataFrame) -> pd.Series:
    """
    Sum of non-missing values per sample.

    A sample where every row is missing stays missing rather than 0.
    """
    return matrix.sum(axis=0, skipna=True, min_count=1)


def col_medians(matrix: pd.DataFrame) -> pd.Series:
    """Median of non-missing values per sample."""
    return matrix.median(axis=0, skipna=True)


def count_non_missing(matrix: pd.DataFrame) -> pd.Series:
    """Number of non-missing values per sample."""
    return matrix.notna().sum(axis=0).astype(float)


def median_polish(matrix: pd.DataFrame, max_iter: int = 10, tol: float = 1e-4) -> pd.Series:
    """
    Robust summary by Tukey median polish: overall + sample effects.

    Samples with no observed value in the group are missing.
    """
    result = tukey_median_polish(matrix, max_iter=max_iter, tol=tol)
    summary = result.overall + result.col_effects
    summary[matrix.isna().all(axis=0)] = np.nan
    return summary.rename(None)


def top_n(matrix: pd.DataFrame, n: int = 3) -> pd.Series:
    """
    Average of the top N most intense rows per sample.

    Args:
        matrix: Rows × samples matrix
        n: Number of top rows to average

    Returns:
        Series of summarized values per sample
    """
    def top_n_mean(col):
        valid = col.dropna()
        if len(valid) == 0:
            return np.nan
        top = valid.nlargest(min(n, len(valid)))
        return top.mean()

    return matrix.apply(top_n_mean, axis=0)


REDUCERS: dict[str, Reducer] = {
    'mean': col_means,
    'sum': col_sums,
    'median': col_medians,
    'count': count_non_missing,
    'median_polish': median_polish,
    'top_n': top_n,
}


def per_sample(fn: Callable, **kwargs) -> Reducer:
    """
    Turn a function of one sample's values into a reducer.

    ``fn`` receives the group's values for one sample (a Series indexed by
    row id) and must return a single number, e.g. ``np.mean`` or
    ``statistics.fmean``.

    Raises:
        ValueError: (when the reducer runs) if ``fn`` does not return a number
    """
    name = getattr(fn, '__name__', 'reducer')

    def reducer(matrix: pd.DataFrame) -> pd.Series:
        results = {}
        for sample in matrix.columns:
            value = fn(matrix[sample], **kwargs)
            try:
                results[sample] = float(value)
            except (TypeError, ValueError) as e:
                raise ValueError(
                    f"Reducer '{name}' must return one number per sample, "
                    f"got {type(value).__name__} for sample '{sample}'"
                ) from e
        return pd.Series(results, index=matrix.columns, dtype=float)

    reducer.__name__ = name
    return reducer


def get_reducer(fn: str | Callable, **kwargs) -> Reducer:
    """
    Resolve a reducer by name, or wrap a per-sample callable.

    Named reducers work on the whole rows x samples matrix of a group. A
    callable is applied to each sample's values separately (see
    ``per_sample``). Keyword arguments are bound to the function (e.g. ``n``
    for top_n).

    Raises:
        ValueError: If the name is unknown
    """
    if callable(fn):
        return per_sample(fn, **kwargs)
    if fn not in REDUCERS:
        raise ValueError(f"Unknown reduction method: {fn}. Choose from {sorted(REDUCERS)}")

    reducer = REDUCERS[fn]
    if not kwargs:
        return reducer

    def bound(matrix: pd.DataFrame) -> pd.Series:
        return reducer(matrix, **kwargs)

    bound.__name__ = reducer.__name__
    return bound
