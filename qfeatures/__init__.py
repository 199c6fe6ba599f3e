"""
qfeatures: linked quantitative feature tables

Holds the levels of a proteomics quantification hierarchy (PSMs -> peptides
-> proteins) in one container, records which rows of one level were
aggregated into which rows of the next, and keeps all levels consistent when
filtering or subsetting.
"""

__version__ = "0.1.0"

from .errors import (
    QFeaturesError,
    NotFoundError,
    NameCollisionError,
    SchemaError,
    MissingColumnError,
    DimensionError,
)
from .assay import Assay
from .links import (
    AssayLink,
    LinkGraph,
)
from .container import QFeatures
from .reducers import (
    tukey_median_polish,
    MedianPolishResult,
    get_reducer,
    REDUCERS,
)
from .aggregation import (
    aggregate_features,
    adjacency_matrix,
    group_memberships,
    COLLAPSED,
    N_FEATURES_COLUMN,
)
from .filtering import (
    FeatureFilter,
    FilterSet,
    parse_filter,
    filter_features,
)
from .subsetting import subset_by_feature
from .data_io import (
    read_features,
    load_sample_metadata,
    export_long_form,
)
