"""
Variance-component estimation for the network-propagated pathway model.

Within one condition, the p-vector of a sample is modelled as

    x = Λ(μ + γ) + ε,   γ ~ N(0, σγ² I),   ε ~ N(0, σε² I)

so that Cov(x) = σγ² M + σε² I with M = ΛΛ' the propagation matrix. The
condition mean μ is unrestricted, so both estimators work with the
restricted (mean-removed) sample covariance S on n - 1 degrees of freedom.

Two strategies are available, selected explicitly by ``VarianceMethod``:

REHE (restricted Haseman-Elston):
    Method-of-moments regression of S on {M, I} in Frobenius norm, with
    both components constrained to be non-negative. Closed form, suited to
    many genes and pathways. Each unconstrained estimate is a linear form
    tr(C S), so under Wishart sampling its standard error is

        se = sqrt(2 tr(C S C S) / (n - 1))

    A component below zero by more than ``tolerance`` standard errors
    raises ``DegenerateVarianceError``: the network cannot explain the
    observed covariance. Smaller negatives are sampling noise; that
    component is set to zero and the other one is refit alone.

REML (restricted maximum likelihood):
    Maximizes the exact restricted likelihood. With M = U diag(d) U' and
    s_i = (U'SU)_ii the negative log-likelihood is

        ½ Σ_i [(n-1) log(σγ² d_i + σε²) + (n-1) s_i / (σγ² d_i + σε²)]

    which is minimized over log-variances with L-BFGS-B. Slower (one
    eigendecomposition plus an optimization) but never negative.

When M ∝ I (an edgeless network) the two components are not identifiable;
only their sum matters for the test, so σγ² = 0 and σε² = tr(S)/p.

References:
    - Shojaie & Michailidis (2010). Biometrika 97(3):519-538.
    - Ma, Shojaie & Michailidis (2016). Bioinformatics 32(20):3124-3132.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Hashable

import numpy as np
from numpy.typing import NDArray
from scipy import linalg, optimize

from netgsa.core.errors import ConvergenceError, DegenerateVarianceError

__all__ = [
    'VarianceMethod',
    'VarianceComponents',
    'estimate_rehe',
    'estimate_reml',
    'estimate_variance_components',
]

logger = logging.getLogger(__name__)

_IDENTIFIABILITY_TOL = 1e-8
_NUMERICAL_FLOOR = 1e-10


class VarianceMethod(Enum):
    """
    Variance-component estimation strategy.

    Attributes:
        REHE: Fast restricted Haseman-Elston moment estimator
        REML: Full restricted maximum likelihood
    """

    REHE = "rehe"
    REML = "reml"


@dataclass(frozen=True)
class VarianceComponents:
    """
    Estimated variance components for one condition.

    Attributes:
        condition: Condition label
        gamma: Network-propagated signal variance σγ²
        noise: Independent noise variance σε²
        method: Strategy that produced the estimate
        n_samples: Samples in the condition
        identifiable: False when M ∝ I and only the sum is meaningful
    """

    condition: Hashable
    gamma: float
    noise: float
    method: VarianceMethod
    n_samples: int
    identifiable: bool = True

    @property
    def total(self) -> float:
        return self.gamma + self.noise

    def to_dict(self) -> dict:
        return {
            'condition': self.condition,
            'gamma_var': self.gamma,
            'noise_var': self.noise,
            'method': self.method.value,
            'n_samples': self.n_samples,
            'identifiable': self.identifiable,
        }


def _is_identifiable(M: NDArray[np.float64]) -> bool:
    p = M.shape[0]
    tr_mm = float(np.sum(M * M))
    tr_m = float(np.trace(M))
    det = tr_mm * p - tr_m ** 2
    return det > _IDENTIFIABILITY_TOL * tr_mm * p


def _standard_error(C: NDArray[np.float64], S: NDArray[np.float64], dof: int) -> float:
    """Wishart standard error of tr(C S) with S as the plug-in covariance."""
    CS = C @ S
    return float(np.sqrt(max(2.0 * np.sum(CS * CS.T) / dof, 0.0)))


def estimate_rehe(
    S: NDArray[np.float64],
    M: NDArray[np.float64],
    n_samples: int,
    condition: Hashable = None,
    tolerance: float = 5.0,
) -> VarianceComponents:
    """
    Restricted Haseman-Elston estimate of (σγ², σε²).

    Args:
        S: Restricted sample covariance (p × p, divisor n - 1).
        M: Propagation matrix ΛΛ'.
        n_samples: Samples in the condition.
        condition: Condition label for reporting.
        tolerance: Standard errors a component may fall below zero before
            the estimate is rejected.

    Raises:
        DegenerateVarianceError: If a component is negative beyond tolerance
            or the total variance is not positive.
    """
    p = S.shape[0]
    tr_s = float(np.trace(S))
    scale = tr_s / p

    if scale <= 0:
        raise DegenerateVarianceError(
            f"Condition {condition!r}: total variance is {scale:.3e}; expression is constant",
            condition=condition, component="total", value=scale,
        )

    if not _is_identifiable(M):
        logger.debug(f"Condition {condition!r}: propagation matrix ∝ I, pooling variance into noise")
        return VarianceComponents(
            condition=condition, gamma=0.0, noise=scale,
            method=VarianceMethod.REHE, n_samples=n_samples, identifiable=False,
        )

    identity = np.eye(p)
    tr_mm = float(np.sum(M * M))
    tr_m = float(np.trace(M))
    tr_sm = float(np.sum(S * M))
    det = tr_mm * p - tr_m ** 2

    # each estimate is tr(C S) for a fixed symmetric C
    forms = {
        "gamma": (p * M - tr_m * identity) / det,
        "noise": (tr_mm * identity - tr_m * M) / det,
    }
    estimates = {
        "gamma": (p * tr_sm - tr_m * tr_s) / det,
        "noise": (tr_mm * tr_s - tr_m * tr_sm) / det,
    }

    dof = max(n_samples - 1, 1)
    for component, value in estimates.items():
        if value >= 0:
            continue
        se = _standard_error(forms[component], S, dof)
        if value < -(tolerance * se + _NUMERICAL_FLOOR * scale):
            n_se = -value / se if se > 0 else np.inf
            raise DegenerateVarianceError(
                f"Condition {condition!r}: REHE estimate of the {component} variance is "
                f"negative ({value:.4g}, {n_se:.1f} standard errors below zero, "
                f"scale {scale:.4g}); use the REML method or increase eta upstream",
                condition=condition, component=component, value=value,
            )
        logger.debug(
            f"Condition {condition!r}: REHE {component} estimate {value:.4g} within "
            f"{tolerance:g} standard errors ({se:.3g}) of zero, set to 0"
        )

    # Non-negative least squares: a clipped component leaves the other to fit alone
    gamma, noise = estimates["gamma"], estimates["noise"]
    if gamma < 0:
        gamma, noise = 0.0, scale
    elif noise < 0:
        gamma, noise = tr_sm / tr_mm, 0.0

    if gamma + noise <= 0:
        raise DegenerateVarianceError(
            f"Condition {condition!r}: both variance components are zero",
            condition=condition, component="total", value=0.0,
        )

    return VarianceComponents(
        condition=condition, gamma=float(gamma), noise=float(noise),
        method=VarianceMethod.REHE, n_samples=n_samples,
    )


def estimate_reml(
    S: NDArray[np.float64],
    M: NDArray[np.float64],
    n_samples: int,
    condition: Hashable = None,
    max_iter: int = 500,
) -> VarianceComponents:
    """
    Restricted maximum-likelihood estimate of (σγ², σε²).

    Args:
        S: Restricted sample covariance (p × p, divisor n - 1).
        M: Propagation matrix ΛΛ'.
        n_samples: Samples in the condition.
        condition: Condition label for reporting.
        max_iter: Optimizer iteration budget.

    Raises:
        ConvergenceError: If the optimizer fails.
        DegenerateVarianceError: If the total variance is not positive.
    """
    p = S.shape[0]
    scale = float(np.trace(S)) / p
    if scale <= 0:
        raise DegenerateVarianceError(
            f"Condition {condition!r}: total variance is {scale:.3e}; expression is constant",
            condition=condition, component="total", value=scale,
        )

    if not _is_identifiable(M):
        return VarianceComponents(
            condition=condition, gamma=0.0, noise=scale,
            method=VarianceMethod.REML, n_samples=n_samples, identifiable=False,
        )

    evals, U = linalg.eigh(M)
    evals = np.clip(evals, 0.0, None)
    s = np.einsum('ij,jk,ki->i', U.T, S, U)
    dof = n_samples - 1

    def objective(theta: NDArray[np.float64]) -> tuple[float, NDArray[np.float64]]:
        g, e = np.exp(theta)
        v = g * evals + e
        value = 0.5 * dof * float(np.sum(np.log(v) + s / v))
        common = 0.5 * dof * (1.0 / v - s / v ** 2)
        grad = np.array([np.sum(common * evals) * g, np.sum(common) * e])
        return value, grad

    # Moment estimates (clipped) make a good starting point
    tr_mm = float(np.sum(M * M))
    tr_m = float(np.trace(M))
    tr_sm = float(np.sum(S * M))
    det = tr_mm * p - tr_m ** 2
    g0 = (p * tr_sm - tr_m * p * scale) / det
    e0 = (tr_mm * p * scale - tr_m * tr_sm) / det
    floor = 1e-3 * scale
    x0 = np.log([max(g0, floor), max(e0, floor)])
    bounds = [(np.log(scale * 1e-12), np.log(scale * 1e6))] * 2

    result = optimize.minimize(
        objective, x0, jac=True, method="L-BFGS-B", bounds=bounds,
        options={'maxiter': max_iter},
    )

    grad_norm = float(np.max(np.abs(result.jac)))
    if not result.success and grad_norm > 1e-4 * (abs(result.fun) + 1.0):
        raise ConvergenceError(
            f"Condition {condition!r}: REML optimization failed after {result.nit} "
            f"iterations ({result.message}; max |gradient| {grad_norm:.3e})",
            condition=condition,
        )

    gamma, noise = np.exp(result.x)
    logger.debug(
        f"Condition {condition!r}: REML gamma={gamma:.4g}, noise={noise:.4g} "
        f"({result.nit} iterations)"
    )
    return VarianceComponents(
        condition=condition, gamma=float(gamma), noise=float(noise),
        method=VarianceMethod.REML, n_samples=n_samples,
    )


def estimate_variance_components(
    S: NDArray[np.float64],
    M: NDArray[np.float64],
    n_samples: int,
    method: VarianceMethod | str = VarianceMethod.REHE,
    condition: Hashable = None,
    tolerance: float = 5.0,
) -> VarianceComponents:
    """Dispatch to the estimator selected by ``method``."""
    method = VarianceMethod(method)
    if method is VarianceMethod.REHE:
        return estimate_rehe(S, M, n_samples, condition=condition, tolerance=tolerance)
    return estimate_reml(S, M, n_samples, condition=condition)
