"""Subsetting a container to the features connected to given row ids."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .container import QFeatures
from .errors import NotFoundError

logger = logging.getLogger(__name__)


def subset_by_feature(container: QFeatures, feature_ids: str | Iterable[str]) -> QFeatures:
    """
    Keep, in every assay, only the rows linked to the given features.

    Each feature id is looked up as a row id in every assay. From every match
    the LinkGraph is followed upward (to the rows it was aggregated from) and
    downward (to the rows it was aggregated into). The result holds the union
    of these closures; assays unconnected to any match become empty.

    Args:
        container: Container to subset (not modified)
        feature_ids: One row id or several

    Returns:
        New container with the same assays, samples and links, restricted to
        the connected rows

    Raises:
        NotFoundError: If no feature id matches a row in any assay
    """
    if isinstance(feature_ids, str):
        feature_ids = [feature_ids]
    wanted = {str(f) for f in feature_ids}

    seeds = {}
    matched = set()
    for name in container.names:
        hits = wanted.intersection(container[name].row_ids)
        if hits:
            seeds[name] = hits
            matched |= hits
            logger.debug(f"  {name}: {len(hits)} direct matches")

    if not matched:
        raise NotFoundError(f"None of the feature ids were found in any assay: {sorted(wanted)[:5]}")
    unmatched = wanted - matched
    if unmatched:
        logger.warning(f"{len(unmatched)} feature ids not found in any assay: {sorted(unmatched)[:5]}")

    reached = container.links.closure(seeds)
    selection = {name: reached.get(name, set()) for name in container.names}
    result = container.subset_rows(selection)

    logger.info(
        f"Subset to {len(matched)} features: "
        + ", ".join(f"{name}={result[name].n_rows}" for name in result.names)
    )
    return result
