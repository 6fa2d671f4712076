"""
Tests for the constrained graphical lasso and undirected network estimation.
"""

import warnings

import numpy as np
import pandas as pd
import pytest

from netgsa.core.errors import (
    ConstraintConflictError,
    ConvergenceError,
    DegenerateFitWarning,
    DimensionError,
)
from netgsa.network.covariance import empirical_covariance
from netgsa.network.glasso import constrained_graphical_lasso
from netgsa.network.undirected import (
    count_edges,
    estimate_undirected_network,
    precision_to_partial_correlation,
)
from netgsa.simulation import precision_to_samples


class TestConstrainedGraphicalLasso:
    """Solver-level checks."""

    def test_zero_penalty_recovers_inverse(self, chain_data):
        S = empirical_covariance(chain_data)
        solution = constrained_graphical_lasso(S, np.zeros_like(S), tol=1e-8)
        np.testing.assert_allclose(solution.precision, np.linalg.inv(S), rtol=1e-5, atol=1e-6)

    def test_matches_scalar_graphical_lasso(self, chain_data):
        """A constant penalty reproduces scikit-learn's solver."""
        from sklearn.covariance import graphical_lasso

        S = empirical_covariance(chain_data)
        alpha = 0.1
        penalty = np.full_like(S, alpha)
        ours = constrained_graphical_lasso(S, penalty, tol=1e-7)
        _, reference = graphical_lasso(S, alpha=alpha, tol=1e-7, enet_tol=1e-7, max_iter=500)
        np.testing.assert_allclose(ours.precision, reference, atol=5e-3)

    def test_diagonal_of_working_covariance_unchanged(self, chain_data):
        S = empirical_covariance(chain_data)
        solution = constrained_graphical_lasso(S, np.full_like(S, 0.2))
        np.testing.assert_allclose(np.diag(solution.covariance), np.diag(S))

    def test_non_positive_diagonal_rejected(self):
        S = np.array([[1.0, 0.0], [0.0, 0.0]])
        with pytest.raises(ValueError, match="non-positive diagonal"):
            constrained_graphical_lasso(S, np.zeros((2, 2)))

    def test_single_gene(self):
        solution = constrained_graphical_lasso(np.array([[4.0]]), np.zeros((1, 1)))
        assert solution.precision[0, 0] == pytest.approx(0.25)

    def test_iteration_budget_exhausted(self, chain_data):
        S = empirical_covariance(chain_data)
        with pytest.raises(ConvergenceError) as excinfo:
            constrained_graphical_lasso(S, np.full_like(S, 0.1), tol=1e-12, max_iter=1)
        assert excinfo.value.parameters['n_iter'] == 1


class TestEstimateUndirectedNetwork:
    """Tests for estimate_undirected_network()."""

    def test_output_is_symmetric(self, chain_data):
        net = estimate_undirected_network(chain_data, lambda_=0.1)
        np.testing.assert_array_equal(net.precision, net.precision.T)
        np.testing.assert_array_equal(net.adjacency, net.adjacency.T)
        assert np.all(np.diag(net.adjacency) == 0)

    def test_df_counts_edges_once(self, chain_data):
        net = estimate_undirected_network(chain_data, lambda_=0.1)
        assert net.df == net.adjacency.sum() // 2
        assert len(net.edge_list()) == net.df

    def test_zero_mask_entries_are_exact_zeros(self, chain_data):
        zero = np.zeros((6, 6), dtype=int)
        zero[0, 1] = zero[1, 0] = 1
        zero[2, 3] = zero[3, 2] = 1
        net = estimate_undirected_network(chain_data, lambda_=0.0, zero=zero)
        assert net.precision[0, 1] == 0.0
        assert net.precision[2, 3] == 0.0
        assert net.adjacency[1, 0] == 0

    def test_certain_edge_survives_large_penalty(self, chain_data):
        """Known edges with weight 0 are unpenalized."""
        one = np.zeros((6, 6), dtype=int)
        one[0, 1] = one[1, 0] = 1
        net = estimate_undirected_network(chain_data, lambda_=5.0, one=one, weight=0.0)
        assert net.precision[0, 1] != 0.0
        assert net.df == 1

    def test_all_edges_certain_is_unpenalized_fit(self, chain_data):
        one = np.ones((6, 6), dtype=int) - np.eye(6, dtype=int)
        net = estimate_undirected_network(chain_data, lambda_=5.0, one=one, weight=0.0, tol=1e-8)
        expected = np.linalg.inv(empirical_covariance(chain_data))
        np.testing.assert_allclose(net.precision, expected, rtol=1e-4, atol=1e-5)
        assert net.df == 15

    def test_known_edge_weight_scales_penalty(self, chain_data):
        one = np.zeros((6, 6), dtype=int)
        one[0, 1] = one[1, 0] = 1
        full = estimate_undirected_network(chain_data, lambda_=0.3, one=one, weight=1.0)
        half = estimate_undirected_network(chain_data, lambda_=0.3, one=one, weight=0.1)
        assert abs(half.precision[0, 1]) > abs(full.precision[0, 1])

    def test_no_constraints_equals_full_zero_penalty_inverse(self, chain_data):
        net = estimate_undirected_network(chain_data, lambda_=0.0, tol=1e-8)
        expected = np.linalg.inv(empirical_covariance(chain_data))
        np.testing.assert_allclose(net.precision, expected, rtol=1e-4, atol=1e-5)

    def test_larger_lambda_is_sparser(self, chain_data):
        dense = estimate_undirected_network(chain_data, lambda_=0.01)
        sparse = estimate_undirected_network(chain_data, lambda_=0.3)
        assert sparse.df < dense.df

    def test_recovers_toy_structure(self, toy_precision):
        """Some lambda on a modest grid recovers exactly the true edge set."""
        data = precision_to_samples(toy_precision, 500, seed=3)
        truth = (np.triu(toy_precision, k=1) != 0)
        recovered = False
        for lam in np.linspace(0.02, 0.8, 30):
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", DegenerateFitWarning)
                net = estimate_undirected_network(data, lambda_=lam)
            if np.array_equal(np.triu(net.adjacency, k=1) != 0, truth):
                recovered = True
                break
        assert recovered

    @pytest.mark.parametrize("seed", [21, 22])
    def test_oracle_lambda_recovers_chain_per_condition(self, toy_precision, seed):
        """200 samples from either of two conditions sharing the 2-edge chain."""
        data = precision_to_samples(toy_precision, 200, seed=seed)
        truth = (np.triu(toy_precision, k=1) != 0)
        matches = []
        for lam in np.linspace(0.02, 0.8, 40):
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", DegenerateFitWarning)
                net = estimate_undirected_network(data, lambda_=lam)
            matches.append(np.array_equal(np.triu(net.adjacency, k=1) != 0, truth))
        assert any(matches)

    def test_df_non_increasing_along_grid(self, chain_data):
        dfs = []
        for lam in [0.01, 0.02, 0.05, 0.1, 0.2, 0.4, 0.8]:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", DegenerateFitWarning)
                dfs.append(estimate_undirected_network(chain_data, lambda_=lam, tol=1e-8).df)
        assert all(later <= earlier for earlier, later in zip(dfs, dfs[1:]))

    def test_gene_permutation_equivariance(self, chain_data):
        perm = np.array([3, 0, 5, 1, 4, 2])
        base = estimate_undirected_network(chain_data, lambda_=0.1, tol=1e-8)
        permuted = estimate_undirected_network(chain_data[perm], lambda_=0.1, tol=1e-8)
        np.testing.assert_allclose(permuted.precision, base.precision[np.ix_(perm, perm)], atol=1e-4)

    def test_edgeless_network_warns_and_records(self, chain_data):
        with pytest.warns(DegenerateFitWarning, match="no edges"):
            net = estimate_undirected_network(chain_data, lambda_=10.0)
        assert net.is_degenerate
        assert len(net.warnings) == 1
        np.testing.assert_array_equal(net.precision, np.diag(np.diag(net.precision)))

    def test_dataframe_input_keeps_gene_ids(self, chain_data):
        genes = [f"G{i}" for i in range(6)]
        df = pd.DataFrame(chain_data, index=genes)
        net = estimate_undirected_network(df, lambda_=0.1)
        assert list(net.gene_ids) == genes
        assert list(net.to_dataframe().columns) == genes

    def test_labelled_masks_aligned_to_data(self, chain_data):
        genes = [f"G{i}" for i in range(6)]
        zero = pd.DataFrame([[0, 1], [1, 0]], index=["G4", "G3"], columns=["G4", "G3"])
        net = estimate_undirected_network(pd.DataFrame(chain_data, index=genes), lambda_=0.0, zero=zero)
        assert net.precision[3, 4] == 0.0

    def test_overlapping_masks_rejected(self, chain_data):
        both = np.zeros((6, 6), dtype=int)
        both[0, 1] = both[1, 0] = 1
        with pytest.raises(ConstraintConflictError):
            estimate_undirected_network(chain_data, lambda_=0.1, zero=both, one=both)

    def test_mask_shape_mismatch(self, chain_data):
        with pytest.raises(DimensionError):
            estimate_undirected_network(chain_data, lambda_=0.1, zero=np.zeros((5, 5)))

    def test_negative_lambda_rejected(self, chain_data):
        with pytest.raises(ValueError, match="lambda"):
            estimate_undirected_network(chain_data, lambda_=-0.1)

    def test_convergence_error_names_grid_point(self, chain_data):
        with pytest.raises(ConvergenceError) as excinfo:
            estimate_undirected_network(chain_data, lambda_=0.2, tol=1e-12, max_iter=1)
        assert excinfo.value.parameters['lambda_'] == 0.2
        assert excinfo.value.parameters['weight'] == 0.0


class TestPartialCorrelation:
    """Tests for precision_to_partial_correlation() and count_edges()."""

    def test_known_values(self):
        omega = np.array([[2.0, -1.0], [-1.0, 2.0]])
        pcor = precision_to_partial_correlation(omega)
        assert pcor[0, 1] == pytest.approx(0.5)
        assert pcor[0, 0] == 0.0

    def test_non_positive_diagonal(self):
        with pytest.raises(ValueError):
            precision_to_partial_correlation(np.array([[0.0, 0.1], [0.1, 1.0]]))

    def test_count_edges(self):
        assert count_edges(np.array([[1.0, 0.2, 0.0], [0.2, 1.0, 0.1], [0.0, 0.1, 1.0]])) == 2
