"""Tests for the per-condition empirical covariance."""

import numpy as np
import pytest

from netgsa.core.errors import DimensionError
from netgsa.network.covariance import empirical_covariance


class TestEmpiricalCovariance:
    """Tests for empirical_covariance()."""

    def test_matches_numpy_unbiased_covariance(self):
        """Genes are rows; divisor is n - 1."""
        data = np.random.default_rng(0).normal(size=(5, 12))
        np.testing.assert_allclose(empirical_covariance(data), np.cov(data), atol=1e-12)

    def test_eta_added_to_diagonal_only(self):
        data = np.random.default_rng(1).normal(size=(4, 10))
        base = empirical_covariance(data)
        shifted = empirical_covariance(data, eta=0.25)
        np.testing.assert_allclose(np.diag(shifted), np.diag(base) + 0.25)
        off = ~np.eye(4, dtype=bool)
        np.testing.assert_array_equal(shifted[off], base[off])

    def test_exactly_symmetric(self):
        data = np.random.default_rng(2).normal(size=(30, 7))
        cov = empirical_covariance(data)
        assert np.array_equal(cov, cov.T)

    def test_invariant_to_gene_means(self):
        """Centring removes per-gene offsets."""
        data = np.random.default_rng(3).normal(size=(3, 20))
        offset = data + np.array([[10.0], [-5.0], [100.0]])
        np.testing.assert_allclose(empirical_covariance(offset), empirical_covariance(data), atol=1e-9)

    def test_single_sample_rejected(self):
        with pytest.raises(DimensionError, match="at least 2 samples"):
            empirical_covariance(np.ones((3, 1)))

    def test_one_dimensional_input_rejected(self):
        with pytest.raises(DimensionError):
            empirical_covariance(np.ones(5))

    def test_negative_eta_rejected(self):
        with pytest.raises(ValueError, match="eta"):
            empirical_covariance(np.random.default_rng(4).normal(size=(2, 5)), eta=-1.0)

    def test_non_finite_rejected(self):
        data = np.random.default_rng(5).normal(size=(2, 5))
        data[0, 0] = np.nan
        with pytest.raises(ValueError, match="non-finite"):
            empirical_covariance(data)
