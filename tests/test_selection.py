"""Tests for BIC-based tuning-parameter selection."""

import numpy as np
import pytest

from netgsa.core.errors import ConvergenceError, DegenerateFitWarning
from netgsa.network.selection import BICRecord, _select, bic_score, select_undirected_network


class TestBicScore:
    """Tests for bic_score()."""

    def test_formula(self):
        S = np.array([[1.0, 0.3], [0.3, 1.0]])
        omega = np.array([[1.2, -0.3], [-0.3, 1.2]])
        expected = np.trace(S @ omega) - np.log(np.linalg.det(omega)) + np.log(50) / 50 * 1
        assert bic_score(S, omega, 50) == pytest.approx(expected)

    def test_explicit_df_overrides_count(self):
        S = np.eye(2)
        assert bic_score(S, np.eye(2), 10, df=3) == pytest.approx(2.0 + 3 * np.log(10) / 10)

    def test_indefinite_precision_scores_infinite(self):
        omega = np.array([[1.0, 2.0], [2.0, 1.0]])
        assert bic_score(np.eye(2), omega, 10) == np.inf


class TestSelect:
    """Tie-breaking in _select()."""

    def test_minimum_wins(self):
        records = [BICRecord(0.1, None, 3.0, 4), BICRecord(0.2, None, 2.0, 2), BICRecord(0.3, None, 2.5, 1)]
        assert _select(records) == 1

    def test_tie_goes_to_larger_lambda(self):
        records = [BICRecord(0.1, None, 2.0, 4), BICRecord(0.4, None, 2.0, 1), BICRecord(0.2, None, 2.0, 2)]
        assert _select(records) == 1

    def test_then_larger_weight(self):
        records = [BICRecord(0.2, 0.0, 2.0, 2), BICRecord(0.2, 0.5, 2.0, 2), BICRecord(0.1, 1.0, 2.5, 3)]
        assert _select(records) == 1

    def test_failed_points_ignored(self):
        records = [
            BICRecord(0.1, None, 5.0, 4),
            BICRecord(0.2, None, float('nan'), None, error="did not converge"),
        ]
        assert _select(records) == 0


class TestSelectUndirectedNetwork:
    """Tests for select_undirected_network()."""

    def test_single_lambda(self, chain_data):
        result = select_undirected_network(chain_data, lambdas=[0.1])
        assert len(result.records) == 1
        assert result.lambda_ == 0.1
        assert result.weight is None

    def test_selected_record_has_minimum_bic(self, chain_data):
        result = select_undirected_network(chain_data, lambdas=[0.02, 0.05, 0.1, 0.2, 0.4])
        bics = [r.bic for r in result.records]
        assert result.best_record.bic == pytest.approx(min(bics))
        assert result.network.lambda_ == result.lambda_

    def test_record_bic_matches_network(self, chain_data):
        result = select_undirected_network(chain_data, lambdas=[0.1, 0.2])
        net = result.network
        expected = bic_score(net.covariance, net.precision, net.n_samples)
        assert result.best_record.bic == pytest.approx(expected)
        assert result.best_record.df == net.df

    def test_table_has_one_selected_row(self, chain_data):
        table = select_undirected_network(chain_data, lambdas=[0.05, 0.1, 0.2]).to_dataframe()
        assert list(table.columns) == ['lambda', 'bic', 'df', 'degenerate', 'error', 'selected']
        assert table['selected'].sum() == 1

    def test_weight_grid(self, chain_data):
        one = np.zeros((6, 6), dtype=int)
        one[0, 1] = one[1, 0] = 1
        result = select_undirected_network(
            chain_data, lambdas=[0.1, 0.2], weights=[0.0, 0.5, 1.0], one=one
        )
        assert len(result.records) == 6
        assert result.has_weight_grid
        grid = result.bic_grid()
        assert grid.shape == (2, 3)
        assert result.weight in (0.0, 0.5, 1.0)
        assert 'weight' in result.to_dataframe().columns

    def test_partial_failure_recorded(self, chain_data):
        """With a one-sweep budget only the unpenalized point converges."""
        result = select_undirected_network(chain_data, lambdas=[0.0, 0.3], max_iter=1, tol=1e-6)
        failed = [r for r in result.records if not r.succeeded]
        assert len(failed) == 1
        assert failed[0].lambda_ == 0.3
        assert np.isnan(failed[0].bic)
        assert result.lambda_ == 0.0
        assert any("did not converge" in w for w in result.warnings)

    def test_all_points_fail(self, chain_data):
        with pytest.raises(ConvergenceError, match="No grid point converged"):
            select_undirected_network(chain_data, lambdas=[0.2, 0.3], max_iter=1, tol=1e-12)

    def test_all_degenerate_warns(self, chain_data):
        with pytest.warns(DegenerateFitWarning, match="edgeless"):
            result = select_undirected_network(chain_data, lambdas=[5.0, 10.0])
        assert result.network.is_degenerate
        # tie on BIC goes to the sparser end of the grid
        assert result.lambda_ == 10.0

    def test_parallel_matches_serial(self, chain_data):
        serial = select_undirected_network(chain_data, lambdas=[0.05, 0.1, 0.2], n_jobs=1)
        parallel = select_undirected_network(chain_data, lambdas=[0.05, 0.1, 0.2], n_jobs=2)
        assert serial.lambda_ == parallel.lambda_
        np.testing.assert_allclose(
            [r.bic for r in serial.records], [r.bic for r in parallel.records]
        )

    def test_keep_networks(self, chain_data):
        result = select_undirected_network(chain_data, lambdas=[0.1, 0.2], keep_networks=True)
        assert set(result.networks) == {(0.1, None), (0.2, None)}

    def test_empty_grid_rejected(self, chain_data):
        with pytest.raises(ValueError, match="at least one"):
            select_undirected_network(chain_data, lambdas=[])
