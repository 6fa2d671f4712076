"""Tests for per-condition network estimation."""

import warnings

import numpy as np
import pytest

from netgsa.core.errors import (
    ConstraintConflictError,
    ConvergenceError,
    DegenerateFitWarning,
    OrderingError,
)
from netgsa.network import conditions as conditions_module
from netgsa.network.conditions import ConditionNetworks, EstimationMethod, estimate_condition_networks
from netgsa.network.directed import DirectedNetwork
from netgsa.network.undirected import UndirectedNetwork


def _upper_mask(p=6):
    return np.triu(np.ones((p, p), dtype=int), k=1)


class TestUndirectedConditions:
    """Undirected estimation across conditions."""

    def test_one_network_per_condition(self, chain_expression):
        nets = estimate_condition_networks(chain_expression, lambdas=[0.05, 0.1, 0.2])
        assert list(nets) == [1, 2]
        assert len(nets) == 2
        assert nets.complete
        assert all(isinstance(nets[c], UndirectedNetwork) for c in nets)
        assert set(nets.selections) == {1, 2}
        assert nets.method is EstimationMethod.UNDIRECTED

    def test_each_condition_uses_only_its_samples(self, chain_expression):
        nets = estimate_condition_networks(chain_expression, lambdas=0.1)
        assert nets[1].n_samples == 150
        expected = np.cov(chain_expression.condition_data(2))
        np.testing.assert_allclose(nets[2].covariance, expected, atol=1e-10)

    def test_bic_table_has_condition_column(self, chain_expression):
        nets = estimate_condition_networks(chain_expression, lambdas=[0.05, 0.1])
        table = nets.bic_table()
        assert table.columns[0] == 'condition'
        assert len(table) == 4
        assert table.groupby('condition')['selected'].sum().tolist() == [1, 1]

    def test_zero_mask_shared_by_all_conditions(self, chain_expression):
        zero = np.zeros((6, 6), dtype=int)
        zero[0, 1] = zero[1, 0] = 1
        nets = estimate_condition_networks(chain_expression, lambdas=[0.01], zero=zero)
        assert nets[1].precision[0, 1] == 0.0
        assert nets[2].precision[0, 1] == 0.0

    def test_parallel_matches_serial(self, chain_expression):
        serial = estimate_condition_networks(chain_expression, lambdas=[0.05, 0.2], n_jobs=1)
        parallel = estimate_condition_networks(chain_expression, lambdas=[0.05, 0.2], n_jobs=2)
        for c in (1, 2):
            np.testing.assert_allclose(serial[c].precision, parallel[c].precision)

    def test_all_grid_points_fail_marks_absent(self, chain_expression):
        with pytest.warns(UserWarning, match="estimation failed and is absent"):
            nets = estimate_condition_networks(chain_expression, lambdas=[0.2], max_iter=1, tol=1e-12)
        assert nets.absent == [1, 2]
        assert not nets.complete
        assert nets[1] is None
        assert "did not converge" in nets.errors[1]

    def test_failure_isolated_to_one_condition(self, chain_expression, monkeypatch):
        real = conditions_module.select_undirected_network
        calls = []

        def flaky(data, **kwargs):
            calls.append(data.shape)
            if len(calls) == 1:
                raise ConvergenceError("solver exhausted", lambda_=0.1)
            return real(data, **kwargs)

        monkeypatch.setattr(conditions_module, "select_undirected_network", flaky)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", UserWarning)
            nets = estimate_condition_networks(chain_expression, lambdas=[0.1])
        assert nets.absent == [1]
        assert isinstance(nets[2], UndirectedNetwork)
        assert nets.errors == {1: "solver exhausted"}
        assert any(w.startswith("Condition 1:") for w in nets.warnings)

    def test_edgeless_warning_labelled_by_condition(self, chain_expression):
        with pytest.warns(DegenerateFitWarning, match="Condition 2: Estimated network has no edges"):
            nets = estimate_condition_networks(chain_expression, lambdas=[10.0])
        assert len(nets.warnings) == 2

    def test_raw_array_with_labels(self, chain_expression):
        nets = estimate_condition_networks(
            chain_expression.data, lambdas=[0.1], conditions=chain_expression.conditions
        )
        assert list(nets) == [1, 2]


class TestDirectedConditions:
    """Directed estimation across conditions."""

    def test_directed_networks(self, chain_expression):
        nets = estimate_condition_networks(chain_expression, method="directed", mask=_upper_mask())
        assert nets.method is EstimationMethod.DIRECTED
        assert all(isinstance(nets[c], DirectedNetwork) for c in nets)
        assert nets.selections == {}
        assert nets.bic_table().empty
        assert nets[1].lambda_ == 0.01

    def test_single_lambda_accepted_as_list(self, chain_expression):
        nets = estimate_condition_networks(
            chain_expression, method="directed", mask=_upper_mask(), lambdas=[0.0], penalty="ridge"
        )
        assert nets[2].lambda_ == 0.0

    def test_order_by_gene_id(self, chain_expression):
        mask = _upper_mask().T
        order = [f"G{i}" for i in reversed(range(6))]
        nets = estimate_condition_networks(chain_expression, method="directed", mask=mask, order=order)
        np.testing.assert_array_equal(nets[1].order, np.arange(6)[::-1])


class TestConfigurationErrors:
    """Invalid configuration raises before any estimation."""

    def test_undirected_needs_lambdas(self, chain_expression):
        with pytest.raises(ValueError, match="lambda grid"):
            estimate_condition_networks(chain_expression)

    def test_mask_rejected_for_undirected(self, chain_expression):
        with pytest.raises(ValueError, match="directed estimation only"):
            estimate_condition_networks(chain_expression, lambdas=[0.1], mask=_upper_mask())

    def test_zero_rejected_for_directed(self, chain_expression):
        with pytest.raises(ValueError, match="undirected estimation only"):
            estimate_condition_networks(
                chain_expression, method="directed", mask=_upper_mask(), zero=np.zeros((6, 6))
            )

    def test_directed_needs_mask(self, chain_expression):
        with pytest.raises(ValueError, match="needs a mask"):
            estimate_condition_networks(chain_expression, method="directed")

    def test_directed_single_lambda(self, chain_expression):
        with pytest.raises(ValueError, match="single lambda"):
            estimate_condition_networks(
                chain_expression, method="directed", mask=_upper_mask(), lambdas=[0.1, 0.2]
            )

    def test_back_edge_rejected_up_front(self, chain_expression, monkeypatch):
        def never(*args, **kwargs):
            raise AssertionError("estimation must not start")

        monkeypatch.setattr(conditions_module, "_estimate_condition", never)
        with pytest.raises(OrderingError):
            estimate_condition_networks(chain_expression, method="directed", mask=_upper_mask().T)

    def test_conflicting_masks(self, chain_expression):
        both = np.zeros((6, 6), dtype=int)
        both[2, 3] = both[3, 2] = 1
        with pytest.raises(ConstraintConflictError):
            estimate_condition_networks(chain_expression, lambdas=[0.1], zero=both, one=both)

    def test_negative_lambda(self, chain_expression):
        with pytest.raises(ValueError, match="non-negative"):
            estimate_condition_networks(chain_expression, lambdas=[0.1, -0.2])

    def test_unknown_method(self, chain_expression):
        with pytest.raises(ValueError):
            estimate_condition_networks(chain_expression, method="bayesian", lambdas=[0.1])


class TestConditionNetworks:
    """Tests for the ConditionNetworks mapping."""

    def test_slots_written_once(self):
        nets = ConditionNetworks([1, 2], EstimationMethod.UNDIRECTED, gene_ids=None)
        nets._fill(1, None, error="failed")
        with pytest.raises(RuntimeError, match="already written"):
            nets._fill(1, None)

    def test_unknown_condition(self):
        nets = ConditionNetworks([1, 2], EstimationMethod.UNDIRECTED, gene_ids=None)
        with pytest.raises(KeyError):
            nets._fill(3, None)

    def test_unfilled_slots_are_absent(self):
        nets = ConditionNetworks(["a", "b"], EstimationMethod.DIRECTED, gene_ids=None)
        assert nets.absent == ["a", "b"]
        assert "absent" in repr(nets)
