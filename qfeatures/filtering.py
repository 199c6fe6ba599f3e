"""
Row filtering on row-data attributes across all assays of a container.

A filter is a conjunction of predicates ``(field, op, value)``. Each predicate
is applied to every assay whose row data has ``field``; assays without the
field are left unchanged. Links are restricted to the surviving rows.

Predicates can be built directly or parsed from an expression such as::

    "Charge >= 2 & `Potential Contaminant` != True and Protein in ['P1', 'P2']"
"""

from __future__ import annotations

import ast
import logging
import operator
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

import pandas as pd

from .container import QFeatures

logger = logging.getLogger(__name__)


def _str_op(method: str) -> Callable[[pd.Series, Any], pd.Series]:
    def compare(column: pd.Series, value: Any) -> pd.Series:
        return getattr(column.astype('string').str, method)(str(value))
    return compare


def _contains(column: pd.Series, value: Any) -> pd.Series:
    return column.astype('string').str.contains(str(value), regex=False)


OPERATORS: dict[str, Callable[[pd.Series, Any], pd.Series]] = {
    '==': operator.eq,
    '!=': operator.ne,
    '<': operator.lt,
    '<=': operator.le,
    '>': operator.gt,
    '>=': operator.ge,
    'in': lambda column, value: column.isin(value),
    'not in': lambda column, value: ~column.isin(value),
    'contains': _contains,
    'startswith': _str_op('startswith'),
    'endswith': _str_op('endswith'),
}

_ORDERING = {'<', '<=', '>', '>='}


@dataclass(frozen=True)
class FeatureFilter:
    """
    One predicate on a row-data column.

    Missing values never satisfy a predicate (including ``!=`` and
    ``not in``).
    """
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in OPERATORS:
            raise ValueError(f"Unknown filter operator: {self.op}. Choose from {list(OPERATORS)}")
        if self.op in ('in', 'not in'):
            if isinstance(self.value, str) or not isinstance(self.value, Iterable):
                raise ValueError(f"Operator '{self.op}' needs a collection of values")
            object.__setattr__(self, 'value', tuple(self.value))

    @property
    def fields(self) -> set[str]:
        return {self.field}

    @property
    def predicates(self) -> tuple[FeatureFilter, ...]:
        return (self,)

    def applies_to(self, row_data: pd.DataFrame) -> bool:
        return self.field in row_data.columns

    def evaluate(self, row_data: pd.DataFrame) -> pd.Series:
        """Boolean mask of rows satisfying the predicate."""
        column = row_data[self.field]
        if (self.op in _ORDERING and not pd.api.types.is_numeric_dtype(column)
                and isinstance(self.value, (int, float)) and not isinstance(self.value, bool)):
            # non-numeric entries such as collapsed markers count as missing
            column = pd.to_numeric(column, errors='coerce')
        mask = OPERATORS[self.op](column, self.value)
        mask = pd.Series(mask, index=row_data.index).fillna(False).astype(bool)
        return mask & column.notna()

    def __str__(self) -> str:
        field = self.field if re.fullmatch(r'[A-Za-z_][\w.]*', self.field) else f'`{self.field}`'
        value = list(self.value) if isinstance(self.value, tuple) else self.value
        return f"{field} {self.op} {value!r}"


@dataclass(frozen=True)
class FilterSet:
    """Conjunction of predicates."""
    predicates: tuple[FeatureFilter, ...]

    def __post_init__(self):
        flat = []
        for predicate in self.predicates:
            flat.extend(predicate.predicates)
        object.__setattr__(self, 'predicates', tuple(flat))

    @property
    def fields(self) -> set[str]:
        return {p.field for p in self.predicates}

    def __str__(self) -> str:
        return ' & '.join(str(p) for p in self.predicates)


# ============================================================================
# Expression parsing
# ============================================================================

_CLAUSE_RE = re.compile(
    r"""^\s*
    (?:`(?P<quoted>[^`]+)`|(?P<name>[A-Za-z_][\w.]*))
    \s*
    (?P<op>==|!=|<=|>=|<|>|not\s+in\b|in\b|contains\b|startswith\b|endswith\b)
    \s*
    (?P<value>.+?)
    \s*$""",
    re.VERBOSE,
)


def _split_clauses(expression: str) -> list[str]:
    """Split on top-level ``&`` / ``and``, ignoring quotes and brackets."""
    clauses = []
    current = []
    depth = 0
    quote = None
    i = 0
    while i < len(expression):
        ch = expression[i]
        if quote:
            if ch == quote:
                quote = None
        elif ch in '\'"`':
            quote = ch
        elif ch in '([{':
            depth += 1
        elif ch in ')]}':
            depth -= 1
        elif depth == 0 and ch == '&':
            clauses.append(''.join(current))
            current = []
            i += 2 if expression[i:i + 2] == '&&' else 1
            continue
        elif depth == 0 and re.match(r'\sand\s', expression[i:i + 5], re.IGNORECASE):
            clauses.append(''.join(current))
            current = []
            i += 4
            continue
        current.append(ch)
        i += 1
    if quote or depth:
        raise ValueError(f"Unbalanced quotes or brackets in filter expression: {expression!r}")
    clauses.append(''.join(current))
    return clauses


def _parse_value(text: str) -> Any:
    try:
        return ast.literal_eval(text)
    except (ValueError, SyntaxError):
        # bare words are strings
        return text


def parse_filter(expression: str) -> FilterSet:
    """
    Parse a filter expression into a FilterSet.

    Clauses are joined with ``&`` or ``and``. Field names containing spaces
    are quoted in backticks. Values are Python literals; bare words are
    taken as strings.

    Raises:
        ValueError: If a clause cannot be parsed
    """
    predicates = []
    for clause in _split_clauses(expression):
        if not clause.strip():
            raise ValueError(f"Empty clause in filter expression: {expression!r}")
        match = _CLAUSE_RE.match(clause)
        if match is None:
            raise ValueError(f"Cannot parse filter clause: {clause.strip()!r}")
        field = match.group('quoted') or match.group('name')
        op = ' '.join(match.group('op').split())
        predicates.append(FeatureFilter(field, op, _parse_value(match.group('value'))))
    return FilterSet(tuple(predicates))


def as_filter(predicate: FeatureFilter | FilterSet | str | Iterable) -> FilterSet:
    """Normalize a predicate, expression string or list of them to a FilterSet."""
    if isinstance(predicate, FilterSet):
        return predicate
    if isinstance(predicate, FeatureFilter):
        return FilterSet((predicate,))
    if isinstance(predicate, str):
        return parse_filter(predicate)
    return FilterSet(tuple(as_filter(p) for p in predicate))


# ============================================================================
# Filter engine
# ============================================================================

def filter_features(
    container: QFeatures,
    predicate: FeatureFilter | FilterSet | str | Iterable,
) -> QFeatures:
    """
    Drop rows failing the predicate from every assay that has its field.

    Args:
        container: Container to filter (not modified)
        predicate: FeatureFilter, FilterSet, expression string, or a list of
            these (all must hold)

    Returns:
        New container with filtered assays and restricted links. An assay may
        end up empty; assays lacking every filtered field are unchanged.
    """
    filters = as_filter(predicate)
    logger.info(f"Filtering features: {filters}")

    selection = {}
    for name in container.names:
        row_data = container[name].row_data
        applicable = [p for p in filters.predicates if p.applies_to(row_data)]
        if not applicable:
            logger.debug(f"  {name}: no filtered field present, unchanged")
            continue
        keep = pd.Series(True, index=row_data.index)
        for p in applicable:
            keep &= p.evaluate(row_data)
        selection[name] = row_data.index[keep]
        logger.info(f"  {name}: kept {int(keep.sum())} of {len(keep)} rows")

    return container.subset_rows(selection)
