"""Tests for network adapters: influence and propagation matrices."""

import numpy as np
import pandas as pd
import pytest

from netgsa.core.errors import DimensionError
from netgsa.network.directed import estimate_directed_network
from netgsa.network.undirected import estimate_undirected_network
from netgsa.stats.influence import (
    NetworkKind,
    influence_matrix,
    propagation_matrix,
    resolve_network,
)

from conftest import chain_edges, make_precision


class TestInfluenceMatrix:
    """Tests for influence_matrix() and propagation_matrix()."""

    @pytest.mark.parametrize("kind", list(NetworkKind))
    def test_edgeless_network_gives_identity(self, kind):
        matrix = np.eye(4) if kind is NetworkKind.PRECISION else np.zeros((4, 4))
        np.testing.assert_allclose(propagation_matrix(matrix, kind), np.eye(4), atol=1e-12)

    def test_precision_gives_implied_covariance(self, chain_precision):
        """ΛΛ' = Ω⁻¹, so data drawn from the network fit σγ² = 1, σε² = 0."""
        M = propagation_matrix(chain_precision, NetworkKind.PRECISION)
        np.testing.assert_allclose(M, np.linalg.inv(chain_precision), atol=1e-10)
        np.testing.assert_allclose(M, M.T)

    def test_precision_influence_is_symmetric_square_root(self, chain_precision):
        lam = influence_matrix(chain_precision, "precision")
        np.testing.assert_allclose(lam, lam.T, atol=1e-12)
        np.testing.assert_allclose(lam @ lam, np.linalg.inv(chain_precision), atol=1e-10)

    def test_precision_keeps_gene_scales(self):
        """Unequal conditional variances survive; partial correlations drop them."""
        omega = make_precision(4, chain_edges(4), value=-0.3)
        d = np.array([1.0, 4.0, 0.25, 2.0])
        scaled = omega * np.sqrt(np.outer(d, d))
        M = propagation_matrix(scaled, NetworkKind.PRECISION)
        np.testing.assert_allclose(M, np.linalg.inv(scaled), atol=1e-10)
        pcor = -omega.copy()
        np.fill_diagonal(pcor, 0.0)
        from_pcor = propagation_matrix(pcor, NetworkKind.PARTIAL_CORRELATION)
        np.testing.assert_allclose(from_pcor, M * np.sqrt(np.outer(d, d)), atol=1e-10)

    def test_precision_and_partial_correlation_agree(self):
        omega = make_precision(5, chain_edges(5), value=-0.3)
        pcor = -omega.copy()
        np.fill_diagonal(pcor, 0.0)
        np.testing.assert_allclose(
            propagation_matrix(omega, NetworkKind.PRECISION),
            propagation_matrix(pcor, NetworkKind.PARTIAL_CORRELATION),
            atol=1e-12,
        )

    def test_single_directed_edge(self):
        b = 0.7
        W = np.zeros((2, 2))
        W[0, 1] = b
        M = propagation_matrix(W, NetworkKind.DIRECTED)
        np.testing.assert_allclose(M, [[1.0, b], [b, 1.0 + b ** 2]])

    def test_directed_influence_is_lower_triangular_in_order(self):
        W = np.zeros((3, 3))
        W[0, 1], W[1, 2] = 0.5, -0.4
        lam = influence_matrix(W, NetworkKind.DIRECTED)
        # gene 0 is a source: nothing propagates into it
        np.testing.assert_allclose(lam[0], [1.0, 0.0, 0.0])
        assert lam[2, 0] != 0.0

    def test_directed_self_loop_rejected(self):
        with pytest.raises(ValueError, match="self-loops"):
            influence_matrix(np.eye(2) * 0.5, NetworkKind.DIRECTED)

    def test_non_positive_definite_rejected(self):
        A = np.array([[0.0, 1.2], [1.2, 0.0]])
        with pytest.raises(ValueError, match="not positive definite"):
            influence_matrix(A, NetworkKind.PARTIAL_CORRELATION)

    def test_non_positive_definite_precision_rejected(self):
        omega = np.array([[1.0, 2.0], [2.0, 1.0]])
        with pytest.raises(ValueError, match="Precision matrix is not positive definite"):
            influence_matrix(omega, NetworkKind.PRECISION)

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            influence_matrix(np.eye(2), "bidirected")


class TestResolveNetwork:
    """Tests for resolve_network()."""

    genes = pd.Index(["a", "b", "c"])

    def test_raw_matrix_needs_kind(self):
        with pytest.raises(ValueError, match="explicit kind"):
            resolve_network(np.eye(3), self.genes)

    def test_raw_matrix_with_kind(self):
        matrix, kind = resolve_network(np.eye(3), self.genes, kind="precision")
        assert kind is NetworkKind.PRECISION
        np.testing.assert_array_equal(matrix, np.eye(3))

    def test_dataframe_reordered_to_gene_order(self):
        frame = pd.DataFrame(np.diag([3.0, 1.0, 2.0]), index=list("cab"), columns=list("cab"))
        matrix, _ = resolve_network(frame, self.genes, kind="precision")
        np.testing.assert_array_equal(np.diag(matrix), [1.0, 2.0, 3.0])

    def test_dataframe_with_unknown_genes(self):
        frame = pd.DataFrame(np.eye(3), index=list("abz"), columns=list("abz"))
        with pytest.raises(DimensionError):
            resolve_network(frame, self.genes, kind="precision")

    def test_wrong_shape(self):
        with pytest.raises(DimensionError, match="shape"):
            resolve_network(np.eye(4), self.genes, kind="directed")

    def test_asymmetric_undirected_rejected(self):
        matrix = np.eye(3)
        matrix[0, 1] = 0.2
        with pytest.raises(ValueError, match="symmetric"):
            resolve_network(matrix, self.genes, kind="partial_correlation")

    def test_estimator_output_carries_kind(self, chain_data):
        net = estimate_undirected_network(chain_data, lambda_=0.1)
        matrix, kind = resolve_network(net, pd.RangeIndex(6))
        assert kind is NetworkKind.PRECISION
        np.testing.assert_array_equal(matrix, net.precision)

    def test_contradicting_kind_rejected(self, chain_data):
        mask = np.triu(np.ones((6, 6), dtype=int), k=1)
        net = estimate_directed_network(chain_data, mask)
        with pytest.raises(ValueError, match="declared kind"):
            resolve_network(net, pd.RangeIndex(6), kind="precision")

    def test_gene_order_mismatch(self, chain_data):
        net = estimate_undirected_network(chain_data, lambda_=0.1)
        with pytest.raises(DimensionError, match="gene order"):
            resolve_network(net, pd.Index([f"G{i}" for i in range(6)]))
