"""Tests for aggregation of one assay into a new linked assay."""

import statistics

import pytest
import pandas as pd
import numpy as np

from qfeatures import (
    COLLAPSED,
    N_FEATURES_COLUMN,
    MissingColumnError,
    NameCollisionError,
    NotFoundError,
    adjacency_matrix,
    aggregate_features,
    group_memberships,
    read_features,
)
from qfeatures.aggregation import _split_group_value


class TestSplitGroupValue:
    """Tests for splitting multi-group values."""

    def test_single_key(self):
        assert _split_group_value('P1', ';') == ['P1']

    def test_shared_key_is_split_and_stripped(self):
        assert _split_group_value('P1; P2 ;P1', ';') == ['P1', 'P2']

    def test_missing_value_has_no_group(self):
        assert _split_group_value(np.nan, ';') == []
        assert _split_group_value(None, ';') == []
        assert _split_group_value('', ';') == []

    def test_no_separator_keeps_value_whole(self):
        assert _split_group_value('P1;P2', None) == ['P1;P2']

    def test_numeric_key(self):
        assert _split_group_value(3, ';') == ['3']

    def test_collapsed_marker_has_no_group(self):
        assert _split_group_value(COLLAPSED, ';') == []
        assert _split_group_value(f'P1;{COLLAPSED}', ';') == ['P1']


class TestGroupMemberships:
    """Tests for row -> group assignment."""

    def test_groups_in_first_appearance_order(self, psm_container):
        groups = group_memberships(psm_container['psms'].row_data, 'Sequence')

        assert list(groups) == ['PEPA', 'PEPB', 'PEPC']
        assert groups['PEPA'] == ['psm1', 'psm2', 'psm3', 'psm4']

    def test_shared_rows_join_every_group(self, psm_container):
        groups = group_memberships(psm_container['psms'].row_data, 'Protein')

        assert groups['P1'] == ['psm1', 'psm2', 'psm3', 'psm4', 'psm5', 'psm6', 'psm7']
        assert groups['P2'] == ['psm5', 'psm6', 'psm7', 'psm8', 'psm9', 'psm10']

    def test_missing_column_raises(self, psm_container):
        with pytest.raises(MissingColumnError):
            group_memberships(psm_container['psms'].row_data, 'Gene')

    def test_adjacency_matrix(self, linked_container):
        matrix = adjacency_matrix(linked_container['peptides'].row_data, 'Protein')

        assert matrix.shape == (3, 2)
        assert list(matrix.columns) == ['P1', 'P2']
        assert matrix.loc['PEPB'].all()
        assert matrix.loc['PEPA'].tolist() == [True, False]
        assert matrix.loc['PEPC'].tolist() == [False, True]


class TestAggregateFeatures:
    """Tests for aggregate_features."""

    def test_psms_to_peptides_mean(self, psm_container):
        """Ten PSMs in groups of 4/3/3 give three peptide rows."""
        result = aggregate_features(psm_container, 'psms', 'Sequence', 'peptides', fn='mean')

        peptides = result['peptides']
        assert result.names == ['psms', 'peptides']
        assert peptides.shape == (3, 2)
        assert list(peptides.row_ids) == ['PEPA', 'PEPB', 'PEPC']

        values = peptides.values
        assert values.loc['PEPA', 'S1'] == pytest.approx(2.5)
        assert values.loc['PEPA', 'S2'] == pytest.approx(5.0)
        assert values.loc['PEPB', 'S1'] == pytest.approx(20.0)
        assert values.loc['PEPC', 'S2'] == pytest.approx(8.0)

    def test_link_records_source_rows(self, psm_container):
        result = aggregate_features(psm_container, 'psms', 'Sequence', 'peptides')

        link = result.links.get_link('psms', 'peptides')
        assert link.mapping['PEPA'] == ('psm1', 'psm2', 'psm3', 'psm4')
        assert link.mapping['PEPB'] == ('psm5', 'psm6', 'psm7')
        assert link.mapping['PEPC'] == ('psm8', 'psm9', 'psm10')

    def test_shared_rows_contribute_to_every_group(self, linked_container):
        """PEPB is used in full for both P1 and P2."""
        proteins = linked_container['proteins'].values

        assert proteins.loc['P1', 'S1'] == pytest.approx((2.5 + 20.0) / 2)
        assert proteins.loc['P1', 'S2'] == pytest.approx((5.0 + 2.0) / 2)
        assert proteins.loc['P2', 'S1'] == pytest.approx((20.0 + 6.0) / 2)
        assert proteins.loc['P2', 'S2'] == pytest.approx((2.0 + 8.0) / 2)

        link = linked_container.links.get_link('peptides', 'proteins')
        assert link.mapping['P1'] == ('PEPA', 'PEPB')
        assert link.mapping['P2'] == ('PEPB', 'PEPC')

    def test_row_data_uniform_values_kept(self, psm_container):
        result = aggregate_features(psm_container, 'psms', 'Sequence', 'peptides')

        row_data = result['peptides'].row_data
        assert row_data.loc['PEPB', 'Charge'] == 2
        assert row_data.loc['PEPC', 'Charge'] == 3
        assert row_data.loc['PEPA', 'Protein'] == 'P1'
        assert row_data.loc['PEPB', 'Protein'] == 'P1;P2'

    def test_row_data_disagreement_collapsed(self, psm_container):
        result = aggregate_features(psm_container, 'psms', 'Sequence', 'peptides')

        row_data = result['peptides'].row_data
        assert row_data.loc['PEPA', 'Charge'] == COLLAPSED
        assert (row_data['pep'] == COLLAPSED).all()

    def test_feature_counts(self, linked_container):
        peptides = linked_container['peptides'].row_data
        proteins = linked_container['proteins'].row_data

        assert peptides[N_FEATURES_COLUMN].tolist() == [4, 3, 3]
        assert proteins[N_FEATURES_COLUMN].tolist() == [2, 2]

    def test_group_column_holds_key(self, linked_container):
        proteins = linked_container['proteins'].row_data

        assert proteins['Protein'].tolist() == ['P1', 'P2']

    def test_every_row_traces_to_its_key(self, linked_container):
        """Each aggregated row is linked only to source rows naming its key."""
        link = linked_container.links.get_link('peptides', 'proteins')
        source = linked_container['peptides'].row_data

        for protein, peptides in link.mapping.items():
            for peptide in peptides:
                assert protein in _split_group_value(source.loc[peptide, 'Protein'], ';')

    @pytest.mark.parametrize('fn,expected', [
        ('sum', [10.0, 60.0, 18.0]),
        ('median', [2.5, 20.0, 6.0]),
        ('count', [4.0, 3.0, 3.0]),
    ])
    def test_named_reducers(self, psm_container, fn, expected):
        result = aggregate_features(psm_container, 'psms', 'Sequence', 'peptides', fn=fn)

        assert result['peptides'].values['S1'].tolist() == pytest.approx(expected)

    def test_custom_reducer(self, psm_container):
        """A callable receives one sample's values at a time."""
        def maximum(values):
            return values.max()

        result = aggregate_features(psm_container, 'psms', 'Sequence', 'peptides', fn=maximum)

        assert result['peptides'].values['S1'].tolist() == [4.0, 30.0, 7.0]

    @pytest.mark.parametrize('fn', [np.mean, np.median, statistics.fmean])
    def test_plain_reductions(self, psm_container, fn):
        """Scalar reductions from numpy or the statistics module work per sample."""
        result = aggregate_features(psm_container, 'psms', 'Sequence', 'peptides', fn=fn)

        values = result['peptides'].values
        assert values['S1'].tolist() == pytest.approx([2.5, 20.0, 6.0])
        assert values['S2'].tolist() == pytest.approx([5.0, 2.0, 8.0])

    def test_non_numeric_reducer_result_raises(self, psm_container):
        def as_list(values):
            return list(values)

        with pytest.raises(ValueError, match="one number per sample"):
            aggregate_features(psm_container, 'psms', 'Sequence', 'peptides', fn=as_list)

    def test_collapsed_key_joins_no_group(self):
        """Rows whose grouping value was collapsed upstream are not pooled."""
        table = pd.DataFrame({
            'Sequence': ['PEPA', 'PEPA', 'PEPB'],
            'Protein': ['P1', 'P2', 'P2'],
            'S1': [1.0, 3.0, 5.0],
        })
        container = read_features(table, ['S1'], name='psms')
        container = aggregate_features(container, 'psms', 'Sequence', 'peptides')
        assert container['peptides'].row_data.loc['PEPA', 'Protein'] == COLLAPSED

        result = aggregate_features(container, 'peptides', 'Protein', 'proteins')

        assert list(result['proteins'].row_ids) == ['P2']
        assert dict(result.links.get_link('peptides', 'proteins').mapping) == {'P2': ('PEPB',)}
        assert result['proteins'].values.loc['P2', 'S1'] == 5.0

    def test_reducer_arguments(self, psm_container):
        result = aggregate_features(
            psm_container, 'psms', 'Sequence', 'peptides', fn='top_n', n=1,
        )

        assert result['peptides'].values['S2'].tolist() == [8.0, 3.0, 9.0]

    def test_no_separator_keeps_shared_value_as_group(self, psm_container):
        result = aggregate_features(psm_container, 'psms', 'Protein', 'proteins', sep=None)

        assert list(result['proteins'].row_ids) == ['P1', 'P1;P2', 'P2']

    def test_missing_group_value_rows_excluded(self):
        table = pd.DataFrame({
            'Sequence': ['PEPA', 'PEPA', None],
            'S1': [1.0, 3.0, 100.0],
        })
        container = read_features(table, ['S1'], name='psms')

        result = aggregate_features(container, 'psms', 'Sequence', 'peptides')

        assert list(result['peptides'].row_ids) == ['PEPA']
        assert result['peptides'].values.loc['PEPA', 'S1'] == 2.0
        link = result.links.get_link('psms', 'peptides')
        assert 'psms_3' not in link.parent_ids

    def test_source_by_position(self, psm_container):
        result = aggregate_features(psm_container, 0, 'Sequence', 'peptides')

        assert result.links.parent_of('peptides') == 'psms'

    def test_input_not_modified(self, psm_container):
        aggregate_features(psm_container, 'psms', 'Sequence', 'peptides')

        assert psm_container.names == ['psms']
        assert len(psm_container.links) == 0

    def test_unknown_source_raises(self, psm_container):
        with pytest.raises(NotFoundError):
            aggregate_features(psm_container, 'peptides', 'Protein', 'proteins')

    def test_missing_group_column_raises(self, psm_container):
        with pytest.raises(MissingColumnError):
            aggregate_features(psm_container, 'psms', 'Gene', 'genes')

    def test_name_collision_raises(self, linked_container):
        with pytest.raises(NameCollisionError):
            aggregate_features(linked_container, 'psms', 'Protein', 'proteins')

    def test_unknown_reducer_raises(self, psm_container):
        with pytest.raises(ValueError, match="Unknown reduction method"):
            aggregate_features(psm_container, 'psms', 'Sequence', 'peptides', fn='mode')
