"""
Statistical utilities for multiple testing and variance moderation.

Functions
---------
bh_fdr
    Benjamini-Hochberg FDR adjustment.
trigamma_inverse
    Inverse of the trigamma function.
fit_f_dist
    Moment estimates of a scaled F prior for gene-wise variances.
squeeze_var
    Empirical Bayes posterior variances.
"""
from __future__ import annotations

from typing import Tuple

import numpy as np
from scipy.special import digamma, polygamma


def bh_fdr(pvals: np.ndarray) -> np.ndarray:
    """Benjamini-Hochberg FDR adjustment.

    Adjusts p-values to control the false discovery rate using the
    Benjamini-Hochberg procedure. Non-finite p-values are left as NaN and
    do not count towards the number of tests.

    Parameters
    ----------
    pvals : array-like
        Raw p-values.

    Returns
    -------
    qvals : np.ndarray
        BH-adjusted q-values, same shape as pvals.

    Examples
    --------
    >>> bh_fdr(np.array([0.001, 0.01, 0.05, 0.1]))
    array([0.004     , 0.02      , 0.06666667, 0.1       ])
    """
    pvals = np.asarray(pvals, dtype=float)
    out = np.full(pvals.shape, np.nan, dtype=float)

    ok = np.isfinite(pvals)
    if ok.sum() == 0:
        return out

    p = pvals[ok]
    order = np.argsort(p)
    ranks = np.arange(1, p.size + 1)

    q = p[order] * p.size / ranks
    # enforce monotonicity
    q = np.minimum.accumulate(q[::-1])[::-1]
    q = np.clip(q, 0.0, 1.0)

    out[np.where(ok)[0][order]] = q
    return out


def trigamma_inverse(x: float, tol: float = 1e-8, max_iter: int = 50) -> float:
    """Solve ``trigamma(y) = x`` for ``y`` by Newton iteration."""
    if x <= 0:
        return np.inf
    if x > 1e7:
        return 1.0 / np.sqrt(x)
    if x < 1e-6:
        return 1.0 / x

    y = 0.5 + 1.0 / x
    for _ in range(max_iter):
        tri = polygamma(1, y)
        delta = tri * (1.0 - tri / x) / polygamma(2, y)
        y = y + delta
        if -delta / y < tol:
            break
    return float(y)


def fit_f_dist(s2: np.ndarray, df: float) -> Tuple[float, float]:
    """Fit a scaled F distribution to gene-wise variances.

    Assumes ``s2 ~ s0^2 * F(df, d0)`` and estimates the prior degrees of
    freedom ``d0`` and scale ``s0^2`` by matching the mean and variance of
    ``log(s2)``.

    Parameters
    ----------
    s2 : np.ndarray
        Gene-wise variance (or quasi-dispersion) estimates.
    df : float
        Residual degrees of freedom of the estimates.

    Returns
    -------
    (d0, s0_sq) : tuple of float
        ``d0`` is ``np.inf`` when the variances are no more dispersed than
        expected by chance.
    """
    s2 = np.asarray(s2, dtype=float)
    ok = np.isfinite(s2) & (s2 > 0)
    if ok.sum() < 3 or df <= 0:
        return np.inf, float(np.median(s2[ok])) if ok.any() else 1.0

    z = np.log(s2[ok])
    e = z - digamma(df / 2.0) + np.log(df / 2.0)
    emean = float(np.mean(e))
    evar = float(np.var(e, ddof=1)) - float(polygamma(1, df / 2.0))

    if evar <= 0:
        return np.inf, float(np.exp(emean))

    d0 = 2.0 * trigamma_inverse(evar)
    if not np.isfinite(d0) or d0 > 1e10:
        return np.inf, float(np.exp(emean))
    s0_sq = float(np.exp(emean + digamma(d0 / 2.0) - np.log(d0 / 2.0)))
    return float(d0), s0_sq


def squeeze_var(s2: np.ndarray, df: float, d0: float, s0_sq: float) -> Tuple[np.ndarray, float]:
    """Shrink variances towards the prior ``s0_sq`` with weight ``d0``.

    Returns
    -------
    (s2_post, df_total)
        Posterior variances and their degrees of freedom ``df + d0``.
    """
    s2 = np.asarray(s2, dtype=float)
    if np.isinf(d0):
        return np.full_like(s2, s0_sq), np.inf
    return (d0 * s0_sq + df * s2) / (d0 + df), float(df + d0)
