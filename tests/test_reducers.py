"""Tests for the reducer functions used by aggregation."""

import pytest
import pandas as pd
import numpy as np

from qfeatures import aggregate_features, read_features
from qfeatures.reducers import (
    tukey_median_polish,
    MedianPolishResult,
    get_reducer,
    REDUCERS,
    col_sums,
    count_non_missing,
    median_polish,
    per_sample,
    top_n,
)


class TestTukeyMedianPolish:
    """Tests for median polish on aggregation groups."""

    def test_effects_indexed_by_rows_and_samples(self, psm_container):
        """Row effects follow the group's PSMs, column effects its samples."""
        group = psm_container['psms'].values.loc[['psm1', 'psm2', 'psm3', 'psm4']]

        result = tukey_median_polish(group)

        assert isinstance(result, MedianPolishResult)
        assert list(result.row_effects.index) == ['psm1', 'psm2', 'psm3', 'psm4']
        assert list(result.col_effects.index) == ['S1', 'S2']
        assert result.residuals.shape == group.shape

    def test_decomposition_reproduces_values(self, psm_container):
        """overall + row effect + sample effect + residual gives back each value."""
        group = psm_container['psms'].values.loc[['psm5', 'psm6', 'psm7']]

        result = tukey_median_polish(group, max_iter=50)

        rebuilt = (
            result.residuals
            .add(result.row_effects, axis=0)
            .add(result.col_effects, axis=1)
            + result.overall
        )
        np.testing.assert_allclose(rebuilt.values, group.values)

    def test_additive_group_has_no_residual(self):
        """PSMs differing by a constant per charge state fit exactly."""
        group = pd.DataFrame({
            'S1': [20.0, 22.0, 21.0],
            'S2': [21.0, 23.0, 22.0],
        }, index=['psm_z2', 'psm_z3', 'psm_z4'])

        result = tukey_median_polish(group)

        assert result.converged
        assert np.abs(result.residuals.values).max() == pytest.approx(0.0)
        assert result.col_effects['S2'] - result.col_effects['S1'] == pytest.approx(1.0)

    def test_outlier_psm_does_not_move_summary(self):
        """One interfered PSM barely changes the aggregated peptide."""
        table = pd.DataFrame({
            'Sequence': ['PEPA'] * 4,
            'S1': [20.0, 20.0, 20.0, 90.0],
            'S2': [21.0, 21.0, 21.0, 21.0],
        })
        container = read_features(table, ['S1', 'S2'], name='psms')

        robust = aggregate_features(container, 'psms', 'Sequence', 'peptides', fn='median_polish')
        naive = aggregate_features(container, 'psms', 'Sequence', 'peptides', fn='mean')

        assert robust['peptides'].values.loc['PEPA'].tolist() == pytest.approx([20.0, 21.0])
        assert naive['peptides'].values.loc['PEPA', 'S1'] == pytest.approx(37.5)

    def test_missing_values(self):
        """Sparse groups still give a finite effect for every observed sample."""
        group = pd.DataFrame({
            'S1': [20.0, np.nan, 21.0],
            'S2': [21.0, 22.0, np.nan],
        }, index=['psm1', 'psm2', 'psm3'])

        result = tukey_median_polish(group)

        assert not result.col_effects.isna().any()


class TestReducers:
    """Tests for the named reducers."""

    def test_median_polish_single_row_returns_values(self):
        """With one row the robust summary is the row itself."""
        data = pd.DataFrame({'S1': [10.0], 'S2': [11.0], 'S3': [12.0]}, index=['PEPA'])

        result = median_polish(data)

        assert result.tolist() == pytest.approx([10.0, 11.0, 12.0])

    def test_median_polish_all_missing_sample(self):
        """A sample with no observations stays missing."""
        data = pd.DataFrame({
            'S1': [10.0, 12.0],
            'S2': [np.nan, np.nan],
        }, index=['PEPA', 'PEPB'])

        result = median_polish(data)

        assert np.isnan(result['S2'])
        assert not np.isnan(result['S1'])

    def test_topn(self, psm_container):
        """Top-N averages the N most intense PSMs of each sample."""
        group = psm_container['psms'].values.loc[['psm1', 'psm2', 'psm3', 'psm4']]

        result = top_n(group, n=2)

        # S1 holds 1..4 and S2 2..8, so the top two differ per sample
        assert result.tolist() == pytest.approx([3.5, 7.0])

    def test_topn_skips_missing_and_short_groups(self):
        """Missing values never rank; fewer than N values are all used."""
        group = pd.DataFrame({
            'S1': [20.0, np.nan, 18.0],
            'S2': [np.nan, np.nan, 17.0],
        }, index=['psm1', 'psm2', 'psm3'])

        result = top_n(group, n=3)

        assert result['S1'] == pytest.approx(19.0)
        assert result['S2'] == pytest.approx(17.0)

    def test_sum_of_all_missing_is_missing(self):
        """Summing a sample with no values gives NaN, not 0."""
        matrix = pd.DataFrame({'S1': [1.0, 2.0], 'S2': [np.nan, np.nan]})

        result = col_sums(matrix)

        assert result['S1'] == 3.0
        assert np.isnan(result['S2'])

    def test_count_non_missing(self):
        matrix = pd.DataFrame({'S1': [1.0, np.nan, 3.0], 'S2': [np.nan, np.nan, np.nan]})

        result = count_non_missing(matrix)

        assert result.tolist() == [2.0, 0.0]

    @pytest.mark.parametrize('name', sorted(REDUCERS))
    def test_order_independent(self, name):
        """Every named reducer ignores the order of the rows."""
        matrix = pd.DataFrame({
            'S1': [1.0, 5.0, 2.0, np.nan],
            'S2': [7.0, 3.0, 4.0, 6.0],
        }, index=['a', 'b', 'c', 'd'])
        reducer = REDUCERS[name]

        forward = reducer(matrix)
        backward = reducer(matrix.iloc[::-1])

        pd.testing.assert_series_equal(forward, backward, check_names=False)


class TestGetReducer:
    """Tests for reducer lookup."""

    def test_by_name(self):
        assert get_reducer('mean') is REDUCERS['mean']

    def test_unknown_name_raises(self):
        with pytest.raises(ValueError, match="Unknown reduction method"):
            get_reducer('geometric')

    def test_callable_applied_per_sample(self, psm_container):
        """A plain callable is wrapped to run on each sample separately."""
        def maximum(values):
            return values.max()

        reducer = get_reducer(maximum)
        group = psm_container['psms'].values.loc[['psm5', 'psm6', 'psm7']]

        assert reducer.__name__ == 'maximum'
        assert reducer(group).tolist() == [30.0, 3.0]

    def test_per_sample_binds_arguments(self):
        group = pd.DataFrame({'S1': [1.0, 2.0, 10.0]}, index=['psm1', 'psm2', 'psm3'])

        reducer = per_sample(np.quantile, q=0.5)

        assert reducer(group)['S1'] == 2.0

    def test_per_sample_rejects_vector_result(self):
        group = pd.DataFrame({'S1': [1.0, 2.0]}, index=['psm1', 'psm2'])

        with pytest.raises(ValueError, match="one number per sample"):
            per_sample(np.sort)(group)

    def test_binds_keyword_arguments(self):
        """Extra arguments are bound to the reducer."""
        matrix = pd.DataFrame({'S1': [10.0, 8.0, 6.0]})

        reducer = get_reducer('top_n', n=1)

        assert reducer(matrix)['S1'] == 10.0
        assert reducer.__name__ == 'top_n'
