"""
Additive regression of engagement on time with time-varying category effects.

The model is

    composite ~ 1 + source type + linear controls + s(day) + sum_j s(day, by=category_j)

fit as a penalized Gaussian regression. Each smooth uses a cubic P-spline
basis (equally spaced B-splines with a second-order difference penalty). The
baseline ``s(day)`` is centered so it is identifiable next to the intercept.
The ``by`` terms are left uncentered and carry a second penalty on the
difference penalty's null space, so a category whose effect is
indistinguishable from zero (or collinear with the baseline) shrinks to
near-zero effective degrees of freedom instead of breaking the fit.

Smoothing parameters are chosen by restricted maximum likelihood with the
scale profiled out, minimised over log smoothing parameters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import linalg, optimize, stats
from scipy.interpolate import BSpline

from ..config import SmoothingConfig
from ..preprocess.schema import SOURCE_TYPE_COLUMN
from .predictors import PredictorSet

logger = logging.getLogger(__name__)

TERM_COLUMNS = ["term", "edf", "ref_df", "f_stat", "p_value", "smoothing_params", "note"]
PARAMETRIC_COLUMNS = ["term", "coef", "std_err", "t_value", "p_value"]
BASELINE_COLUMNS = ["day", "estimate", "std_err", "lower", "upper"]

RANK_TOL = 1e-8


@dataclass(frozen=True)
class SmoothFitResult:
    terms: pd.DataFrame
    parametric: pd.DataFrame
    baseline: pd.DataFrame
    deviance_explained: float
    r_squared_adj: float
    reml: float
    scale: float
    edf_total: float
    n_obs: int
    n_dropped: int
    note: str = ""

    def summary(self) -> Dict[str, object]:
        return {
            "deviance_explained": self.deviance_explained,
            "r_squared_adj": self.r_squared_adj,
            "reml": self.reml,
            "scale": self.scale,
            "edf_total": self.edf_total,
            "n_obs": self.n_obs,
            "n_dropped": self.n_dropped,
            "note": self.note,
        }


@dataclass
class _Block:
    name: str
    columns: slice
    penalties: List[np.ndarray] = field(default_factory=list)
    rank: int = 0


def pspline_basis(x: np.ndarray, lower: float, upper: float, n_basis: int, degree: int = 3) -> np.ndarray:
    """Equally spaced B-spline basis with ``n_basis`` columns on ``[lower, upper]``."""
    n_segments = n_basis - degree
    width = (upper - lower) / n_segments
    knots = lower + width * np.arange(-degree, n_segments + degree + 1)
    clipped = np.clip(np.asarray(x, dtype=float), knots[degree], knots[n_segments + degree])
    return BSpline.design_matrix(clipped, knots, degree).toarray()


def difference_penalty(n_basis: int, order: int = 2) -> np.ndarray:
    diff = np.diff(np.eye(n_basis), n=order, axis=0)
    return diff.T @ diff


def _null_space_penalty(penalty: np.ndarray) -> np.ndarray:
    eigvals, eigvecs = np.linalg.eigh(penalty)
    null = eigvecs[:, eigvals < RANK_TOL * max(eigvals.max(), 1.0)]
    return null @ null.T


def _matrix_rank(matrix: np.ndarray) -> int:
    eigvals = np.linalg.eigvalsh(matrix)
    return int(np.sum(eigvals > RANK_TOL * max(eigvals.max(), 1.0)))


def _log_pseudo_det(matrix: np.ndarray, rank: int) -> float:
    if rank == 0:
        return 0.0
    eigvals = np.sort(np.linalg.eigvalsh(matrix))[::-1][:rank]
    return float(np.sum(np.log(np.clip(eigvals, 1e-300, None))))


def _undefined_result(
    smooth: PredictorSet, n_obs: int, n_dropped: int, note: str
) -> SmoothFitResult:
    rows = [{"term": "s(day)", "edf": np.nan, "ref_df": np.nan, "f_stat": np.nan,
             "p_value": np.nan, "smoothing_params": [], "note": note}]
    rows += [
        {"term": f"s(day):{name}", "edf": np.nan, "ref_df": np.nan, "f_stat": np.nan,
         "p_value": np.nan, "smoothing_params": [], "note": note}
        for name in smooth.display_names
    ]
    return SmoothFitResult(
        terms=pd.DataFrame(rows, columns=TERM_COLUMNS),
        parametric=pd.DataFrame(columns=PARAMETRIC_COLUMNS),
        baseline=pd.DataFrame(columns=BASELINE_COLUMNS),
        deviance_explained=float("nan"),
        r_squared_adj=float("nan"),
        reml=float("nan"),
        scale=float("nan"),
        edf_total=float("nan"),
        n_obs=n_obs,
        n_dropped=n_dropped,
        note=note,
    )


class _PenalizedGaussian:
    """Penalized least squares with REML smoothing parameter selection."""

    def __init__(self, X: np.ndarray, y: np.ndarray, blocks: Sequence[_Block]):
        self.X = X
        self.y = y
        self.n, self.p = X.shape
        self.blocks = list(blocks)
        self.XtX = X.T @ X
        self.Xty = X.T @ y
        self.ridge = 1e-9 * max(float(np.mean(np.diag(self.XtX))), 1.0)

        # Embed every penalty at full size, rescaled to the block's data scale.
        self.penalties: List[np.ndarray] = []
        for block in self.blocks:
            cols = block.columns
            data_norm = np.linalg.norm(self.XtX[cols, cols])
            for penalty in block.penalties:
                scale = data_norm / max(np.linalg.norm(penalty), 1e-300)
                full = np.zeros((self.p, self.p))
                full[cols, cols] = penalty * max(scale, 1e-12)
                self.penalties.append(full)
        self.null_dim = self.p - sum(block.rank for block in self.blocks)

    def penalty(self, log_lambdas: np.ndarray) -> np.ndarray:
        total = np.zeros((self.p, self.p))
        for lam, matrix in zip(np.exp(log_lambdas), self.penalties):
            total += lam * matrix
        return total

    def solve(self, log_lambdas: np.ndarray) -> Tuple[np.ndarray, tuple, np.ndarray]:
        S = self.penalty(log_lambdas)
        A = self.XtX + S + self.ridge * np.eye(self.p)
        factor = linalg.cho_factor(A, lower=False)
        beta = linalg.cho_solve(factor, self.Xty)
        return beta, factor, S

    def reml(self, log_lambdas: np.ndarray) -> float:
        try:
            beta, factor, S = self.solve(log_lambdas)
        except linalg.LinAlgError:
            return 1e20
        resid = self.y - self.X @ beta
        penalized_rss = float(resid @ resid + beta @ S @ beta)
        dof = self.n - self.null_dim
        scale = max(penalized_rss / dof, 1e-300)
        log_det_a = 2.0 * float(np.sum(np.log(np.abs(np.diag(factor[0])))))
        log_det_s = 0.0
        for block in self.blocks:
            if not block.penalties:
                continue
            cols = block.columns
            log_det_s += _log_pseudo_det(S[cols, cols], block.rank)
        return 0.5 * dof * np.log(scale) + 0.5 * log_det_a - 0.5 * log_det_s

    def optimise(self, bounds: Tuple[float, float], max_iter: int) -> Tuple[np.ndarray, float]:
        if not self.penalties:
            return np.zeros(0), self.reml(np.zeros(0))
        start = np.zeros(len(self.penalties))
        result = optimize.minimize(
            self.reml,
            start,
            method="L-BFGS-B",
            bounds=[bounds] * len(start),
            options={"maxiter": max_iter},
        )
        if not result.success:
            logger.warning("REML optimisation stopped early: %s", result.message)
        return np.asarray(result.x, dtype=float), float(result.fun)


def _term_test(beta: np.ndarray, cov: np.ndarray, edf: float, resid_df: float) -> Tuple[float, float, float]:
    """Wald test of a smooth block against zero with a rank-truncated pseudo-inverse."""
    rank = int(min(max(1, round(edf)), beta.size))
    eigvals, eigvecs = np.linalg.eigh(cov)
    order = np.argsort(eigvals)[::-1][:rank]
    kept = eigvals[order]
    if np.any(kept <= 0):
        return float(rank), float("nan"), float("nan")
    projected = eigvecs[:, order].T @ beta
    statistic = float(np.sum(projected ** 2 / kept)) / rank
    p_value = float(stats.f.sf(statistic, rank, max(resid_df, 1.0)))
    return float(rank), statistic, p_value


def fit_smooth_model(
    frame: pd.DataFrame,
    smooth: PredictorSet,
    linear: Optional[PredictorSet] = None,
    response: str = "composite",
    day: str = "day",
    control: Optional[str] = SOURCE_TYPE_COLUMN,
    config: Optional[SmoothingConfig] = None,
) -> SmoothFitResult:
    """
    Fit the additive time model.

    Args:
        frame: table holding response, day, control and category columns
        smooth: categories whose effect may vary smoothly over days
        linear: categories entering as linear controls only
        response: continuous response column (the composite score)
        day: integer day index column
        control: categorical source-type control

    Returns:
        SmoothFitResult with per-term EDF and tests, deviance explained and
        the centered baseline curve per observed day
    """
    cfg = config or SmoothingConfig()
    linear = linear or PredictorSet(())

    smooth_design = smooth.design(frame)
    linear_design = linear.design(frame)
    y_all = pd.to_numeric(frame[response], errors="coerce").astype(float)
    day_all = pd.to_numeric(frame[day], errors="coerce").astype(float)

    complete = y_all.notna() & day_all.notna()
    complete &= smooth_design.notna().all(axis=1) & linear_design.notna().all(axis=1)
    if control is not None:
        complete &= frame[control].notna()
    n_obs = int(complete.sum())
    n_dropped = int((~complete).sum())
    if n_dropped:
        logger.info("Smooth model: %d incomplete records excluded", n_dropped)

    y = y_all[complete].to_numpy()
    days = day_all[complete].to_numpy()
    unique_days = np.unique(days)
    min_days = max(cfg.min_unique_days, 2)
    if unique_days.size < min_days:
        note = f"only {unique_days.size} distinct days; at least {min_days} required"
        logger.warning("Smooth model undefined: %s", note)
        return _undefined_result(smooth, n_obs, n_dropped, note)

    n_basis = int(min(cfg.basis_size, unique_days.size + cfg.degree - 1))
    lower, upper = float(unique_days.min()), float(unique_days.max())
    basis = pspline_basis(days, lower, upper, n_basis, cfg.degree)
    base_penalty = difference_penalty(n_basis)

    columns: List[np.ndarray] = [np.ones((n_obs, 1))]
    names: List[str] = ["(Intercept)"]
    blocks: List[_Block] = []

    if control is not None:
        levels = sorted(frame.loc[complete, control].unique().tolist())
        for level in levels[1:]:
            columns.append((frame.loc[complete, control] == level).to_numpy(dtype=float)[:, None])
            names.append(f"{control}[{level}]")
    for predictor in linear:
        columns.append(linear_design.loc[complete, predictor.internal_id].to_numpy()[:, None])
        names.append(predictor.display_name)
    n_parametric = len(names)

    # Centered baseline: absorb the sum-to-zero constraint.
    constraint = basis.sum(axis=0)[None, :]
    Z = linalg.null_space(constraint)
    start = n_parametric
    columns.append(basis @ Z)
    blocks.append(
        _Block("s(day)", slice(start, start + Z.shape[1]), [Z.T @ base_penalty @ Z])
    )
    start += Z.shape[1]

    null_penalty = _null_space_penalty(base_penalty)
    term_notes: Dict[str, str] = {}
    for predictor in smooth:
        values = smooth_design.loc[complete, predictor.internal_id].to_numpy()
        term = f"s(day):{predictor.display_name}"
        if values.size < 2 or np.var(values) < cfg.min_variance:
            term_notes[term] = "near-zero variance; term dropped"
            logger.warning("%s has near-zero variance and is reported with zero EDF", term)
            continue
        columns.append(basis * values[:, None])
        blocks.append(
            _Block(term, slice(start, start + n_basis), [base_penalty, null_penalty])
        )
        start += n_basis

    for block in blocks:
        block.rank = _matrix_rank(sum(block.penalties))

    X = np.hstack(columns)
    model = _PenalizedGaussian(X, y, blocks)
    if n_obs <= model.null_dim + 1:
        note = f"{n_obs} observations cannot support {model.null_dim} unpenalized coefficients"
        logger.warning("Smooth model undefined: %s", note)
        return _undefined_result(smooth, n_obs, n_dropped, note)

    log_lambdas, reml_score = model.optimise(cfg.log_lambda_bounds, cfg.max_iter)
    beta, factor, S = model.solve(log_lambdas)
    a_inv = linalg.cho_solve(factor, np.eye(model.p))
    resid = y - X @ beta
    rss = float(resid @ resid)
    influence = a_inv @ model.XtX
    edf_total = float(np.trace(influence))
    resid_df = max(n_obs - edf_total, 1.0)
    scale = float((rss + beta @ S @ beta) / max(n_obs - model.null_dim, 1))
    cov = scale * a_inv

    lambdas = np.exp(log_lambdas)
    rows: List[Dict[str, object]] = []
    pen_idx = 0
    for block in blocks:
        cols = block.columns
        edf = float(np.trace(influence[cols, cols]))
        ref_df, f_stat, p_value = _term_test(beta[cols], cov[cols, cols], edf, resid_df)
        n_pen = len(block.penalties)
        rows.append(
            {
                "term": block.name,
                "edf": edf,
                "ref_df": ref_df,
                "f_stat": f_stat,
                "p_value": p_value,
                "smoothing_params": [float(lam) for lam in lambdas[pen_idx:pen_idx + n_pen]],
                "note": "",
            }
        )
        pen_idx += n_pen
    for term, note in term_notes.items():
        rows.append(
            {"term": term, "edf": 0.0, "ref_df": 0.0, "f_stat": np.nan, "p_value": np.nan,
             "smoothing_params": [], "note": note}
        )
    order = {f"s(day):{name}": idx for idx, name in enumerate(smooth.display_names)}
    terms = pd.DataFrame(rows, columns=TERM_COLUMNS)
    terms = terms.sort_values("term", key=lambda col: col.map(lambda t: order.get(t, -1)), kind="mergesort")

    std_err = np.sqrt(np.clip(np.diag(cov), 0.0, None))
    t_values = beta[:n_parametric] / np.where(std_err[:n_parametric] > 0, std_err[:n_parametric], np.nan)
    parametric = pd.DataFrame(
        {
            "term": names,
            "coef": beta[:n_parametric],
            "std_err": std_err[:n_parametric],
            "t_value": t_values,
            "p_value": 2.0 * stats.t.sf(np.abs(t_values), resid_df),
        },
        columns=PARAMETRIC_COLUMNS,
    )

    base_cols = blocks[0].columns
    curve_basis = pspline_basis(unique_days, lower, upper, n_basis, cfg.degree) @ Z
    estimate = curve_basis @ beta[base_cols]
    curve_var = np.einsum("ij,jk,ik->i", curve_basis, cov[base_cols, base_cols], curve_basis)
    curve_se = np.sqrt(np.clip(curve_var, 0.0, None))
    z = float(stats.norm.ppf(0.975))
    baseline = pd.DataFrame(
        {
            "day": unique_days.astype(int),
            "estimate": estimate,
            "std_err": curve_se,
            "lower": estimate - z * curve_se,
            "upper": estimate + z * curve_se,
        },
        columns=BASELINE_COLUMNS,
    )

    tss = float(np.sum((y - y.mean()) ** 2))
    deviance_explained = 1.0 - rss / tss if tss > 0 else float("nan")
    r_squared_adj = (
        1.0 - (rss / resid_df) / (tss / (n_obs - 1)) if tss > 0 and n_obs > 1 else float("nan")
    )
    logger.info(
        "Smooth model: n=%d, edf=%.2f, deviance explained=%.3f",
        n_obs,
        edf_total,
        deviance_explained,
    )
    return SmoothFitResult(
        terms=terms.reset_index(drop=True),
        parametric=parametric,
        baseline=baseline,
        deviance_explained=float(deviance_explained),
        r_squared_adj=float(r_squared_adj),
        reml=reml_score,
        scale=scale,
        edf_total=edf_total,
        n_obs=n_obs,
        n_dropped=n_dropped,
    )


__all__ = [
    "SmoothFitResult",
    "difference_penalty",
    "fit_smooth_model",
    "pspline_basis",
]
