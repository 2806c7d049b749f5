"""
Logistic models of engagement labels on category scores.

Each model is fit by maximum likelihood first (statsmodels ``Logit``). When
that fit fails, does not converge, produces an implausibly large coefficient
or the data show (quasi-)complete separation, the same model is refit with
Firth's bias-reduced estimator. If both estimators fail the model's rows are
reported as undefined and sibling models are unaffected.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.tools.sm_exceptions import PerfectSeparationError

from ..config import LogisticConfig
from ..errors import FitFailure
from ..preprocess.schema import SOURCE_TYPE_COLUMN
from .firth import firth_logit
from .predictors import PredictorSet

logger = logging.getLogger(__name__)

LOGISTIC_COLUMNS = [
    "outcome",
    "model",
    "term",
    "internal_id",
    "coef",
    "std_err",
    "odds_ratio",
    "or_ci_lower",
    "or_ci_upper",
    "p_value",
    "method",
    "n_obs",
    "n_events",
    "n_dropped",
    "note",
]


@dataclass
class _Estimates:
    params: np.ndarray
    bse: np.ndarray
    ci_lower: np.ndarray
    ci_upper: np.ndarray
    pvalues: np.ndarray
    method: str


def _outcome_vector(frame: pd.DataFrame, outcome: str) -> pd.Series:
    values = frame[outcome]
    if isinstance(values.dtype, pd.BooleanDtype) or values.dtype == bool:
        values = values.astype("Float64")
    return pd.Series(
        pd.to_numeric(values, errors="coerce").to_numpy(dtype=float, na_value=np.nan),
        index=frame.index,
    )


def _control_dummies(frame: pd.DataFrame, control: Optional[str]) -> Tuple[pd.DataFrame, List[str]]:
    if control is None:
        return pd.DataFrame(index=frame.index), []
    levels = sorted(frame[control].dropna().unique().tolist())
    dummies = pd.DataFrame(index=frame.index)
    names: List[str] = []
    for idx, level in enumerate(levels[1:]):
        column = (frame[control] == level).astype(float)
        column[frame[control].isna()] = np.nan
        dummies[f"ctl{idx}"] = column
        names.append(f"{control}[{level}]")
    return dummies, names


def has_separation(X: np.ndarray, y: np.ndarray) -> bool:
    """True when some single predictor column separates the classes.

    Quasi-complete separation counts: a category present in no negative case
    gives ``min(x | y=1) >= max(x | y=0)``.
    """
    positives = y == 1
    for col in X.T:
        if np.ptp(col) == 0:
            continue
        x1 = col[positives]
        x0 = col[~positives]
        if x1.min() >= x0.max() or x1.max() <= x0.min():
            return True
    return False


def _fit_mle(X: pd.DataFrame, y: np.ndarray, config: LogisticConfig) -> _Estimates:
    try:
        result = sm.Logit(y, X).fit(disp=False, maxiter=config.max_iter)
        params = np.asarray(result.params, dtype=float)
        bse = np.asarray(result.bse, dtype=float)
        conf = np.asarray(result.conf_int(alpha=1.0 - config.ci_level), dtype=float)
        pvalues = np.asarray(result.pvalues, dtype=float)
    except (PerfectSeparationError, np.linalg.LinAlgError, ValueError) as exc:
        raise FitFailure(f"maximum likelihood failed: {exc}") from exc

    if not result.mle_retvals.get("converged", True):
        raise FitFailure("maximum likelihood did not converge")
    if not (np.all(np.isfinite(params)) and np.all(np.isfinite(bse))):
        raise FitFailure("maximum likelihood produced non-finite estimates")
    slopes = params[1:]
    if slopes.size and np.max(np.abs(slopes)) > config.coef_bound:
        raise FitFailure(
            f"coefficient magnitude {np.max(np.abs(slopes)):.1f} exceeds bound {config.coef_bound}"
        )
    return _Estimates(
        params=params,
        bse=bse,
        ci_lower=conf[:, 0],
        ci_upper=conf[:, 1],
        pvalues=pvalues,
        method="mle",
    )


def _fit_firth(X: pd.DataFrame, y: np.ndarray, config: LogisticConfig) -> _Estimates:
    fit = firth_logit(
        X.to_numpy(dtype=float),
        y,
        max_iter=config.firth_max_iter,
        tol=config.firth_tol,
        max_step=config.firth_max_step,
        ci_level=config.ci_level,
        profile_indices=list(range(1, X.shape[1])),
    )
    return _Estimates(
        params=fit.params,
        bse=fit.bse,
        ci_lower=fit.ci_lower,
        ci_upper=fit.ci_upper,
        pvalues=fit.pvalues,
        method="firth",
    )


def _undefined_row(base: dict, term: str, internal_id: str, method: str, note: str) -> dict:
    row = dict(base)
    row.update(
        {
            "term": term,
            "internal_id": internal_id,
            "coef": np.nan,
            "std_err": np.nan,
            "odds_ratio": np.nan,
            "or_ci_lower": np.nan,
            "or_ci_upper": np.nan,
            "p_value": np.nan,
            "method": method,
            "note": note,
        }
    )
    return row


def fit_logistic(
    frame: pd.DataFrame,
    outcome: str,
    predictors: PredictorSet,
    control: Optional[str] = SOURCE_TYPE_COLUMN,
    config: Optional[LogisticConfig] = None,
    model_name: str = "joint",
) -> pd.DataFrame:
    """
    Fit one logistic model and return its tidy coefficient table.

    Args:
        frame: table with the outcome, predictor and control columns
        outcome: binary label column (nullable booleans allowed)
        predictors: numeric predictors, referenced by internal id
        control: categorical control column; first level is the reference
        model_name: tag for this model in the output

    Returns:
        One row per predictor plus one per control contrast (intercept omitted)
    """
    cfg = config or LogisticConfig()
    y_all = _outcome_vector(frame, outcome)
    design = predictors.design(frame)
    dummies, dummy_names = _control_dummies(frame, control)

    complete = y_all.notna() & design.notna().all(axis=1)
    if control is not None:
        complete &= frame[control].notna()
    n_dropped = int((~complete).sum())
    y = y_all[complete].to_numpy(dtype=float)
    design = design.loc[complete]
    dummies = dummies.loc[complete]

    base = {
        "outcome": outcome,
        "model": model_name,
        "n_obs": int(complete.sum()),
        "n_events": int(y.sum()),
        "n_dropped": n_dropped,
    }
    terms = list(zip(predictors.display_names, predictors.internal_ids))
    terms += list(zip(dummy_names, dummies.columns))

    if y.size == 0 or y.min() == y.max():
        note = "outcome has a single class among complete cases"
        logger.warning("%s / %s: %s", outcome, model_name, note)
        return pd.DataFrame(
            [_undefined_row(base, term, iid, "failed", note) for term, iid in terms],
            columns=LOGISTIC_COLUMNS,
        )

    X = pd.concat([design, dummies], axis=1)
    constant = [col for col in X.columns if np.ptp(X[col].to_numpy()) == 0]
    X = sm.add_constant(X.drop(columns=constant), has_constant="add")

    estimates: Optional[_Estimates] = None
    failures: List[str] = []
    separated = cfg.check_separation and has_separation(X.to_numpy()[:, 1:], y)
    if separated:
        failures.append("separation detected")
    else:
        try:
            estimates = _fit_mle(X, y, cfg)
        except FitFailure as exc:
            failures.append(str(exc))

    if estimates is None:
        logger.info("%s / %s: refitting with Firth estimator (%s)", outcome, model_name, failures[-1])
        try:
            estimates = _fit_firth(X, y, cfg)
        except FitFailure as exc:
            failures.append(f"firth failed: {exc}")
            logger.warning("%s / %s: both estimators failed: %s", outcome, model_name, "; ".join(failures))

    note = "; ".join(failures)
    positions = {name: idx for idx, name in enumerate(X.columns)}
    rows = []
    for term, internal_id in terms:
        if internal_id in constant:
            rows.append(_undefined_row(base, term, internal_id, "constant", "zero variance among complete cases"))
            continue
        if estimates is None:
            rows.append(_undefined_row(base, term, internal_id, "failed", note))
            continue
        idx = positions[internal_id]
        coef = float(estimates.params[idx])
        row = dict(base)
        row.update(
            {
                "term": term,
                "internal_id": internal_id,
                "coef": coef,
                "std_err": float(estimates.bse[idx]),
                "odds_ratio": float(np.exp(coef)),
                "or_ci_lower": float(np.exp(estimates.ci_lower[idx])),
                "or_ci_upper": float(np.exp(estimates.ci_upper[idx])),
                "p_value": float(estimates.pvalues[idx]),
                "method": estimates.method,
                "note": note,
            }
        )
        rows.append(row)
    return pd.DataFrame(rows, columns=LOGISTIC_COLUMNS)


def _run_units(units: Sequence[Callable[[], pd.DataFrame]], n_jobs: int) -> List[pd.DataFrame]:
    if n_jobs > 1 and len(units) > 1:
        with ThreadPoolExecutor(max_workers=n_jobs) as pool:
            futures = [pool.submit(unit) for unit in units]
            return [future.result() for future in futures]
    return [unit() for unit in units]


def fit_each_predictor(
    frame: pd.DataFrame,
    outcome: str,
    predictors: PredictorSet,
    control: Optional[str] = SOURCE_TYPE_COLUMN,
    config: Optional[LogisticConfig] = None,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """One model per predictor (predictor + control), concatenated."""
    units = [
        (lambda p=p: fit_logistic(frame, outcome, predictors.subset([p.internal_id]), control, config, p.display_name))
        for p in predictors
    ]
    tables = _run_units(units, n_jobs)
    return pd.concat(tables, ignore_index=True) if tables else pd.DataFrame(columns=LOGISTIC_COLUMNS)


def fit_outcomes(
    frame: pd.DataFrame,
    outcomes: Sequence[str],
    predictors: PredictorSet,
    control: Optional[str] = SOURCE_TYPE_COLUMN,
    config: Optional[LogisticConfig] = None,
    per_predictor: bool = False,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """
    Fit each outcome variant independently and stack the tidy tables.

    Args:
        outcomes: label columns, one model family per label
        per_predictor: fit one model per predictor instead of a joint model
        n_jobs: worker threads; results keep the input order

    Returns:
        Concatenated coefficient tables tagged by ``outcome``
    """
    units: List[Callable[[], pd.DataFrame]] = []
    for outcome in outcomes:
        if per_predictor:
            for p in predictors:
                units.append(
                    lambda outcome=outcome, p=p: fit_logistic(
                        frame, outcome, predictors.subset([p.internal_id]), control, config, p.display_name
                    )
                )
        else:
            units.append(lambda outcome=outcome: fit_logistic(frame, outcome, predictors, control, config))
    tables = _run_units(units, n_jobs)
    if not tables:
        return pd.DataFrame(columns=LOGISTIC_COLUMNS)
    table = pd.concat(tables, ignore_index=True)
    methods = table["method"].value_counts().to_dict()
    logger.info("Fitted %d logistic models over %d outcomes: %s", len(units), len(outcomes), methods)
    return table


__all__ = [
    "LOGISTIC_COLUMNS",
    "fit_each_predictor",
    "fit_logistic",
    "fit_outcomes",
    "has_separation",
]
