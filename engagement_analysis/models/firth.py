"""Firth's bias-reduced logistic regression.

Maximises the Jeffreys-penalized log-likelihood
``l(beta) + 0.5 * log|X' W X|``, which keeps estimates finite under complete
or quasi-complete separation. Confidence intervals come from the profile
penalized likelihood and p-values from the penalized likelihood ratio test.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy import optimize, stats
from scipy.special import expit

from ..errors import FitFailure

logger = logging.getLogger(__name__)

GRADIENT_TOL = 1e-5
MAX_HALVINGS = 30
PROFILE_SEARCH_LIMIT = 60.0


@dataclass
class FirthFit:
    params: np.ndarray
    bse: np.ndarray
    loglik: float
    converged: bool
    iterations: int
    ci_lower: Optional[np.ndarray] = None
    ci_upper: Optional[np.ndarray] = None
    pvalues: Optional[np.ndarray] = None


def _penalized_loglik(
    X: np.ndarray, y: np.ndarray, beta: np.ndarray
) -> Tuple[float, np.ndarray, np.ndarray, np.ndarray]:
    eta = X @ beta
    prob = expit(eta)
    weights = prob * (1.0 - prob)
    loglik = float(np.sum(y * eta - np.logaddexp(0.0, eta)))
    info = (X * weights[:, None]).T @ X
    sign, logdet = np.linalg.slogdet(info)
    if sign <= 0 or not np.isfinite(logdet):
        return float("-inf"), prob, weights, info
    return loglik + 0.5 * float(logdet), prob, weights, info


def _newton(
    X: np.ndarray,
    y: np.ndarray,
    start: np.ndarray,
    free: np.ndarray,
    max_iter: int,
    tol: float,
    max_step: float,
) -> Tuple[np.ndarray, float, np.ndarray, bool, int]:
    beta = start.astype(float).copy()
    pll, prob, weights, info = _penalized_loglik(X, y, beta)
    if not np.isfinite(pll):
        raise FitFailure("Fisher information is singular at the starting values")
    if free.size == 0:
        return beta, pll, info, True, 0

    for iteration in range(1, max_iter + 1):
        try:
            cov = np.linalg.inv(info)
        except np.linalg.LinAlgError as exc:
            raise FitFailure(f"Fisher information became singular: {exc}") from exc
        root_w = X * np.sqrt(weights)[:, None]
        hat = np.einsum("ij,jk,ik->i", root_w, cov, root_w)
        score = X[:, free].T @ (y - prob + hat * (0.5 - prob))
        try:
            delta = np.linalg.solve(info[np.ix_(free, free)], score)
        except np.linalg.LinAlgError as exc:
            raise FitFailure(f"Newton step is undefined: {exc}") from exc

        largest = float(np.max(np.abs(delta)))
        if largest > max_step:
            delta = delta * (max_step / largest)

        step = 1.0
        for _ in range(MAX_HALVINGS):
            candidate = beta.copy()
            candidate[free] += step * delta
            cand_pll, cand_prob, cand_weights, cand_info = _penalized_loglik(X, y, candidate)
            if np.isfinite(cand_pll) and cand_pll >= pll - 1e-10:
                break
            step *= 0.5
        else:
            raise FitFailure("Step halving could not increase the penalized likelihood")

        beta, pll, prob, weights, info = candidate, cand_pll, cand_prob, cand_weights, cand_info
        if np.max(np.abs(step * delta)) < tol and np.max(np.abs(score)) < GRADIENT_TOL:
            return beta, pll, info, True, iteration

    return beta, pll, info, False, max_iter


def _fit(
    X: np.ndarray,
    y: np.ndarray,
    start: np.ndarray,
    fixed: Optional[Tuple[int, float]],
    max_iter: int,
    tol: float,
    max_step: float,
) -> Tuple[np.ndarray, float, np.ndarray, bool, int]:
    free = np.arange(X.shape[1])
    beta = start.copy()
    if fixed is not None:
        idx, value = fixed
        beta[idx] = value
        free = free[free != idx]
    return _newton(X, y, beta, free, max_iter, tol, max_step)


def _profile_bound(
    X: np.ndarray,
    y: np.ndarray,
    fit: FirthFit,
    idx: int,
    direction: float,
    critical: float,
    max_iter: int,
    tol: float,
    max_step: float,
) -> float:
    """Solve ``2 * (l*max - l*(beta_idx = b)) = critical`` on one side of the estimate."""
    center = float(fit.params[idx])

    def deviance_gap(value: float) -> float:
        beta, pll, _, converged, _ = _fit(
            X, y, fit.params, (idx, value), max_iter, tol, max_step
        )
        if not converged:
            raise FitFailure(f"Profile fit did not converge at {value:.4f}")
        return 2.0 * (fit.loglik - pll) - critical

    width = float(fit.bse[idx]) if np.isfinite(fit.bse[idx]) and fit.bse[idx] > 0 else 1.0
    inner = center
    outer = center + direction * width
    while deviance_gap(outer) < 0:
        inner = outer
        width *= 2.0
        outer = center + direction * width
        if width > PROFILE_SEARCH_LIMIT:
            raise FitFailure("Profile likelihood does not cross the critical value")
    return float(optimize.brentq(deviance_gap, min(inner, outer), max(inner, outer), xtol=1e-6))


def firth_logit(
    X: np.ndarray,
    y: np.ndarray,
    max_iter: int = 100,
    tol: float = 1e-6,
    max_step: float = 5.0,
    ci_level: float = 0.95,
    profile_indices: Optional[Sequence[int]] = None,
) -> FirthFit:
    """
    Fit a Firth logistic regression.

    Args:
        X: design matrix including the intercept column
        y: 0/1 outcome
        profile_indices: coefficients to profile (default: all)

    Returns:
        FirthFit; coefficients whose profile or test cannot be computed get NaN
        bounds/p-values while the rest of the fit stays usable
    """
    X = np.asarray(X, dtype=float)
    y = np.asarray(y, dtype=float)
    start = np.zeros(X.shape[1])
    beta, pll, info, converged, iterations = _fit(X, y, start, None, max_iter, tol, max_step)
    if not converged or not np.all(np.isfinite(beta)):
        raise FitFailure(f"Firth estimator did not converge in {max_iter} iterations")
    try:
        cov = np.linalg.inv(info)
    except np.linalg.LinAlgError as exc:
        raise FitFailure(f"Covariance of the Firth fit is singular: {exc}") from exc
    bse = np.sqrt(np.clip(np.diag(cov), 0.0, None))

    fit = FirthFit(
        params=beta,
        bse=bse,
        loglik=pll,
        converged=True,
        iterations=iterations,
        ci_lower=np.full(beta.size, np.nan),
        ci_upper=np.full(beta.size, np.nan),
        pvalues=np.full(beta.size, np.nan),
    )

    critical = float(stats.chi2.ppf(ci_level, df=1))
    indices = range(beta.size) if profile_indices is None else profile_indices
    for idx in indices:
        try:
            fit.ci_lower[idx] = _profile_bound(X, y, fit, idx, -1.0, critical, max_iter, tol, max_step)
            fit.ci_upper[idx] = _profile_bound(X, y, fit, idx, 1.0, critical, max_iter, tol, max_step)
        except (RuntimeError, ValueError) as exc:
            logger.warning("Profile interval failed for coefficient %d: %s", idx, exc)
        try:
            _, null_pll, _, null_converged, _ = _fit(
                X, y, fit.params, (idx, 0.0), max_iter, tol, max_step
            )
            if null_converged:
                statistic = max(2.0 * (fit.loglik - null_pll), 0.0)
                fit.pvalues[idx] = float(stats.chi2.sf(statistic, df=1))
        except FitFailure as exc:
            logger.warning("Likelihood ratio test failed for coefficient %d: %s", idx, exc)
    return fit


__all__ = ["FirthFit", "firth_logit"]
