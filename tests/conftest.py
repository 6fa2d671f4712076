"""
Pytest configuration and shared fixtures.

This module provides synthetic network and expression generators shared by
all test suites. Every generator takes an explicit seed.
"""

import numpy as np
import pandas as pd
import pytest

from netgsa.core.expression import ExpressionMatrix
from netgsa.simulation import precision_to_samples


def make_precision(n_genes: int, edges, value: float = 0.4) -> np.ndarray:
    """
    Precision matrix with unit diagonal and ``value`` on the given edges.

    Args:
        n_genes: Number of genes p
        edges: Iterable of (i, j) gene pairs
        value: Off-diagonal entry for every edge (keep |value| small enough
            for positive definiteness)
    """
    omega = np.eye(n_genes)
    for i, j in edges:
        omega[i, j] = omega[j, i] = value
    return omega


def chain_edges(n_genes: int):
    """Edges of the path graph 0-1-2-...-(p-1)."""
    return [(i, i + 1) for i in range(n_genes - 1)]


def generate_expression(
    precisions,
    n_samples: int,
    seed: int = 42,
    mean_shift=None,
    gene_prefix: str = "G",
) -> ExpressionMatrix:
    """
    Draw one Gaussian block per condition from the given precision matrices.

    Args:
        precisions: One precision matrix per condition (labels 1..K)
        n_samples: Samples per condition
        seed: Random seed for reproducibility
        mean_shift: Optional dict condition -> mean vector
        gene_prefix: Prefix for gene ids
    """
    rng = np.random.default_rng(seed)
    blocks, labels, samples = [], [], []
    for k, omega in enumerate(precisions, start=1):
        mean = None if mean_shift is None else mean_shift.get(k)
        blocks.append(precision_to_samples(omega, n_samples, mean=mean, seed=rng))
        labels.extend([k] * n_samples)
        samples.extend(f"c{k}_s{j:03d}" for j in range(n_samples))

    p = precisions[0].shape[0]
    return ExpressionMatrix(
        data=np.hstack(blocks),
        gene_ids=pd.Index([f"{gene_prefix}{i}" for i in range(p)]),
        sample_ids=pd.Index(samples),
        conditions=np.array(labels),
    )


@pytest.fixture
def chain_precision():
    """6-gene chain precision matrix."""
    return make_precision(6, chain_edges(6), value=0.4)


@pytest.fixture
def toy_precision():
    """4 genes: chain 0-1-2 plus isolated gene 3."""
    return make_precision(4, [(0, 1), (1, 2)], value=0.5)


@pytest.fixture
def chain_expression(chain_precision):
    """Two conditions, 6 chain-structured genes, 150 samples each."""
    return generate_expression([chain_precision, chain_precision], n_samples=150, seed=7)


@pytest.fixture
def chain_data(chain_precision):
    """Single-condition 6 × 300 expression slice from the chain network."""
    return precision_to_samples(chain_precision, 300, seed=11)


@pytest.fixture
def pathway_matrix():
    """Two pathways over G0..G5 plus one with no genes."""
    genes = [f"G{i}" for i in range(6)]
    return pd.DataFrame(
        [[1, 1, 1, 0, 0, 0],
         [0, 0, 0, 1, 1, 1],
         [0, 0, 0, 0, 0, 0]],
        index=pd.Index(["P_first", "P_second", "P_empty"]),
        columns=genes,
    )
