"""Shared fixtures: a small PSM -> peptide -> protein hierarchy.

Ten PSMs over two samples, three peptide sequences (4/3/3 PSMs) and two
proteins. PEPB is shared between P1 and P2.

    PEPA (psm1-4)  -> P1
    PEPB (psm5-7)  -> P1;P2
    PEPC (psm8-10) -> P2
"""

import pandas as pd
import pytest

from qfeatures import aggregate_features, read_features


@pytest.fixture
def psm_table():
    """Flat PSM table as it would come out of a search engine export."""
    return pd.DataFrame({
        'psm_id': [f'psm{i}' for i in range(1, 11)],
        'Sequence': ['PEPA'] * 4 + ['PEPB'] * 3 + ['PEPC'] * 3,
        'Protein': ['P1'] * 4 + ['P1;P2'] * 3 + ['P2'] * 3,
        'Charge': [2, 2, 3, 3, 2, 2, 2, 3, 3, 3],
        'pep': [0.01, 0.02, 0.2, 0.03, 0.04, 0.5, 0.01, 0.06, 0.07, 0.08],
        'S1': [1.0, 2.0, 3.0, 4.0, 10.0, 20.0, 30.0, 5.0, 6.0, 7.0],
        'S2': [2.0, 4.0, 6.0, 8.0, 1.0, 2.0, 3.0, 7.0, 8.0, 9.0],
    })


@pytest.fixture
def psm_container(psm_table):
    """Container holding only the PSM assay."""
    return read_features(psm_table, ['S1', 'S2'], name='psms', row_id_col='psm_id')


@pytest.fixture
def linked_container(psm_container):
    """PSMs aggregated to peptides (mean) and peptides to proteins (mean)."""
    peptides = aggregate_features(psm_container, 'psms', 'Sequence', 'peptides', fn='mean')
    return aggregate_features(peptides, 'peptides', 'Protein', 'proteins', fn='mean')
