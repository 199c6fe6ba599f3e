"""
Row-level provenance between assays.

An AssayLink records, for every row of a child assay, the parent-assay rows it
was computed from (for aggregation: child = aggregated assay, parent = source
assay). A LinkGraph holds all links of a container. Each assay has at most one
parent, so the graph is a forest keyed by child name.

Traversal terminology follows the aggregation direction:
- upward: child row -> the parent rows that fed it (towards the raw data)
- downward: parent row -> the child rows it contributed to
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from functools import cached_property
from types import MappingProxyType

import pandas as pd

from .errors import NotFoundError, SchemaError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class AssayLink:
    """
    Mapping from child row ids to the parent row ids that produced them.

    Parent ids for a child row are kept in first-seen order without
    duplicates. A link is never modified; ``restrict`` returns a new one.
    """
    parent: str
    child: str
    mapping: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self):
        if self.parent == self.child:
            raise SchemaError(f"Assay '{self.child}' cannot be linked to itself")
        normalized = {}
        for child_id, parent_ids in self.mapping.items():
            if isinstance(parent_ids, str):
                parent_ids = [parent_ids]
            normalized[str(child_id)] = tuple(dict.fromkeys(str(p) for p in parent_ids))
        object.__setattr__(self, 'mapping', MappingProxyType(normalized))

    def __len__(self) -> int:
        return len(self.mapping)

    def __repr__(self) -> str:
        return f"<AssayLink {self.parent} -> {self.child}, {len(self)} rows>"

    def __eq__(self, other) -> bool:
        if not isinstance(other, AssayLink):
            return NotImplemented
        return (
            self.parent == other.parent
            and self.child == other.child
            and dict(self.mapping) == dict(other.mapping)
        )

    @property
    def child_ids(self) -> set[str]:
        return set(self.mapping)

    @property
    def parent_ids(self) -> set[str]:
        return {p for parents in self.mapping.values() for p in parents}

    @cached_property
    def _inverse(self) -> dict[str, tuple[str, ...]]:
        inverse: dict[str, list[str]] = defaultdict(list)
        for child_id, parent_ids in self.mapping.items():
            for parent_id in parent_ids:
                inverse[parent_id].append(child_id)
        return {k: tuple(v) for k, v in inverse.items()}

    def pairs(self) -> Iterator[tuple[str, str]]:
        """Iterate over (child_id, parent_id) pairs."""
        for child_id, parent_ids in self.mapping.items():
            for parent_id in parent_ids:
                yield child_id, parent_id

    def parents_of(self, child_ids: Iterable[str]) -> set[str]:
        """Parent rows feeding any of the given child rows."""
        found = set()
        for child_id in child_ids:
            found.update(self.mapping.get(child_id, ()))
        return found

    def children_of(self, parent_ids: Iterable[str]) -> set[str]:
        """Child rows fed by any of the given parent rows."""
        found = set()
        for parent_id in parent_ids:
            found.update(self._inverse.get(parent_id, ()))
        return found

    def restrict(
        self,
        parent_ids: Iterable[str] | None = None,
        child_ids: Iterable[str] | None = None,
    ) -> AssayLink:
        """
        Copy of this link keeping only pairs whose endpoints both survive.

        ``None`` leaves that side unrestricted. Child rows left without any
        parent are dropped from the mapping; the link itself always remains,
        even when empty.
        """
        parent_keep = None if parent_ids is None else set(parent_ids)
        child_keep = None if child_ids is None else set(child_ids)
        mapping = {}
        for child_id, parents in self.mapping.items():
            if child_keep is not None and child_id not in child_keep:
                continue
            if parent_keep is not None:
                parents = tuple(p for p in parents if p in parent_keep)
            if parents:
                mapping[child_id] = parents
        return AssayLink(self.parent, self.child, mapping)

    def to_frame(self) -> pd.DataFrame:
        """Long table of (child_id, parent_id) pairs."""
        return pd.DataFrame(list(self.pairs()), columns=['child_id', 'parent_id'])


class LinkGraph:
    """
    Forest of AssayLinks, keyed by child assay name.

    The graph is immutable: ``with_link``, ``restrict`` and ``without_assays``
    return new graphs.
    """

    def __init__(self, links: Iterable[AssayLink] = ()):
        self._links: dict[str, AssayLink] = {}
        for link in links:
            self._check_new(link)
            self._links[link.child] = link

    def _check_new(self, link: AssayLink) -> None:
        if link.child in self._links:
            raise SchemaError(
                f"Assay '{link.child}' already has parent "
                f"'{self._links[link.child].parent}'"
            )
        if link.child == link.parent or link.child in self.ancestors(link.parent):
            raise SchemaError(
                f"Linking '{link.parent}' -> '{link.child}' would create a cycle"
            )

    def __iter__(self) -> Iterator[AssayLink]:
        return iter(self._links.values())

    def __len__(self) -> int:
        return len(self._links)

    def __repr__(self) -> str:
        edges = ", ".join(f"{link.parent}->{link.child}" for link in self)
        return f"<LinkGraph [{edges}]>"

    @property
    def links(self) -> tuple[AssayLink, ...]:
        return tuple(self._links.values())

    def parent_of(self, name: str) -> str | None:
        link = self._links.get(name)
        return link.parent if link is not None else None

    def children_of(self, name: str) -> list[str]:
        return [link.child for link in self._links.values() if link.parent == name]

    def get_link(self, parent: str, child: str) -> AssayLink:
        link = self._links.get(child)
        if link is None or link.parent != parent:
            raise NotFoundError(f"No link from '{parent}' to '{child}'")
        return link

    def ancestors(self, name: str) -> list[str]:
        """Parent chain of an assay, nearest first."""
        chain = []
        while name in self._links:
            name = self._links[name].parent
            chain.append(name)
        return chain

    def descendants(self, name: str) -> list[str]:
        """All assays derived from ``name``, breadth first."""
        found = []
        queue = self.children_of(name)
        while queue:
            current = queue.pop(0)
            found.append(current)
            queue.extend(self.children_of(current))
        return found

    def with_link(self, link: AssayLink) -> LinkGraph:
        self._check_new(link)
        return LinkGraph([*self._links.values(), link])

    def without_assays(self, names: Iterable[str]) -> LinkGraph:
        """Drop every link with an endpoint among ``names``."""
        names = set(names)
        kept = [
            link for link in self
            if link.parent not in names and link.child not in names
        ]
        return LinkGraph(kept)

    def restrict(self, row_ids: Mapping[str, Iterable[str]]) -> LinkGraph:
        """
        Restrict every link to the surviving rows of its endpoints.

        Assays not named in ``row_ids`` are treated as unchanged.
        """
        row_ids = {name: set(ids) for name, ids in row_ids.items()}
        return LinkGraph(
            link.restrict(
                parent_ids=row_ids.get(link.parent),
                child_ids=row_ids.get(link.child),
            )
            for link in self
        )

    def closure(self, seeds: Mapping[str, Iterable[str]]) -> dict[str, set[str]]:
        """
        Rows connected to the seed rows, per assay.

        From every seeded assay the seed rows are followed upward through each
        parent link to the root, and downward through every child link to the
        leaves. Results from all seeds are unioned. Rows reachable only
        through a shared parent (siblings) are not included.
        """
        reached: dict[str, set[str]] = defaultdict(set)
        for name, ids in seeds.items():
            ids = set(ids)
            if not ids:
                continue
            reached[name] |= ids

            current, assay = ids, name
            while current and assay in self._links:
                link = self._links[assay]
                current = link.parents_of(current)
                reached[link.parent] |= current
                assay = link.parent

            stack = [(name, ids)]
            while stack:
                assay, current = stack.pop()
                for child in self.children_of(assay):
                    found = self._links[child].children_of(current)
                    if found:
                        reached[child] |= found
                        stack.append((child, found))
        return dict(reached)
