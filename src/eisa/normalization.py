"""
Library sizes, normalization factors and log-scale expression values.

Normalization factors follow the trimmed mean of M-values (TMM) method of
Robinson & Oshlack (2010): each column is compared to a reference column
using gene-wise log ratios, the most extreme ratios and abundances are
trimmed, and the remaining ratios are averaged with inverse-variance
weights. Factors are scaled to multiply to one.

Three bases are kept side by side on a :class:`~eisa.counts.CountTable`:
``exon`` and ``intron`` factors are computed from one half of the table and
shared by the exonic and intronic column of each sample; ``individual``
factors treat every column as a separate library.

Functions
---------
calc_norm_factors
    TMM normalization factors for the columns of a count matrix.
cpm
    Counts per million, optionally log2-transformed with a prior count.
scale_to_mean_library
    Linearly rescale each column to the mean library size.
published_log_values
    log2 of library-rescaled counts plus a pseudocount.
compute_size_factors
    Store library sizes and factors of all three bases on a count table.
activate_basis
    Select which basis is used for fitting and reporting.
"""
from __future__ import annotations

from typing import Optional

import numpy as np
import pandas as pd
from scipy.stats import rankdata

from .counts import EXON, INTRON, CountTable
from .errors import InvalidPolicyError, NormalizationError

BASES = ("exon", "intron", "individual")


def _tmm_factor(
        obs: np.ndarray,
        ref: np.ndarray,
        lib_obs: float,
        lib_ref: float,
        logratio_trim: float = 0.3,
        sum_trim: float = 0.05,
        do_weighting: bool = True,
        a_cutoff: float = -1e10,
) -> float:
    """TMM factor of one column relative to the reference column."""
    obs = np.asarray(obs, dtype=float)
    ref = np.asarray(ref, dtype=float)

    with np.errstate(divide="ignore", invalid="ignore"):
        log_r = np.log2((obs / lib_obs) / (ref / lib_ref))
        abs_e = (np.log2(obs / lib_obs) + np.log2(ref / lib_ref)) / 2
        # asymptotic variance of the log ratio
        v = (lib_obs - obs) / lib_obs / obs + (lib_ref - ref) / lib_ref / ref

    fin = np.isfinite(log_r) & np.isfinite(abs_e) & (abs_e > a_cutoff)
    log_r, abs_e, v = log_r[fin], abs_e[fin], v[fin]

    if log_r.size == 0 or np.max(np.abs(log_r)) < 1e-6:
        return 1.0

    n = log_r.size
    lo_l = np.floor(n * logratio_trim) + 1
    hi_l = n + 1 - lo_l
    lo_s = np.floor(n * sum_trim) + 1
    hi_s = n + 1 - lo_s

    rank_l = rankdata(log_r)
    rank_s = rankdata(abs_e)
    keep = (rank_l >= lo_l) & (rank_l <= hi_l) & (rank_s >= lo_s) & (rank_s <= hi_s)

    if do_weighting:
        with np.errstate(divide="ignore", invalid="ignore"):
            f = np.nansum(log_r[keep] / v[keep]) / np.nansum(1.0 / v[keep])
    else:
        f = np.mean(log_r[keep]) if keep.any() else np.nan

    if not np.isfinite(f):
        f = 0.0
    return float(2.0 ** f)


def calc_norm_factors(
        counts,
        lib_size: Optional[np.ndarray] = None,
        *,
        ref_column: Optional[int] = None,
        logratio_trim: float = 0.3,
        sum_trim: float = 0.05,
        do_weighting: bool = True,
        a_cutoff: float = -1e10,
) -> np.ndarray:
    """Compute TMM normalization factors for each column of ``counts``.

    Parameters
    ----------
    counts : array-like or pd.DataFrame
        Gene by column count matrix.
    lib_size : np.ndarray, optional
        Library sizes; defaults to column sums.
    ref_column : int, optional
        Index of the reference column. By default the column whose upper
        quartile (relative to its library size) is closest to the mean upper
        quartile is used.
    logratio_trim : float, default 0.3
        Fraction of genes trimmed at each end of the log-ratio distribution.
    sum_trim : float, default 0.05
        Fraction of genes trimmed at each end of the abundance distribution.
    do_weighting : bool, default True
        Use inverse asymptotic variances as weights.
    a_cutoff : float, default -1e10
        Minimum average log abundance for a gene to be used.

    Returns
    -------
    np.ndarray
        One factor per column; the factors multiply to one.

    Raises
    ------
    NormalizationError
        A column has no counts.

    Examples
    --------
    >>> x = np.array([[10, 20], [30, 60], [5, 10]])
    >>> calc_norm_factors(x)
    array([1., 1.])
    """
    x = np.asarray(counts, dtype=float)
    if x.ndim != 2:
        raise NormalizationError("Count matrix must be two-dimensional.")
    n_cols = x.shape[1]

    lib = x.sum(axis=0) if lib_size is None else np.asarray(lib_size, dtype=float)
    if lib.shape != (n_cols,):
        raise NormalizationError("lib_size must have one entry per column.")
    if not np.all(np.isfinite(lib)) or (lib <= 0).any():
        bad = np.where(~(lib > 0))[0].tolist()
        raise NormalizationError(f"Cannot normalize columns without counts: {bad}")

    x = x[(x > 0).any(axis=1)]
    if x.shape[0] == 0:
        return np.ones(n_cols)

    if ref_column is None:
        f75 = np.quantile(x, 0.75, axis=0) / lib
        if np.median(f75) < 1e-20:
            ref_column = int(np.argmax(np.sqrt(x).sum(axis=0)))
        else:
            ref_column = int(np.argmin(np.abs(f75 - f75.mean())))

    f = np.array([
        _tmm_factor(
            x[:, i], x[:, ref_column], lib[i], lib[ref_column],
            logratio_trim=logratio_trim, sum_trim=sum_trim,
            do_weighting=do_weighting, a_cutoff=a_cutoff,
        )
        for i in range(n_cols)
    ])
    return f / np.exp(np.mean(np.log(f)))


def cpm(
        counts: pd.DataFrame,
        lib_size: Optional[np.ndarray] = None,
        log: bool = False,
        prior_count: float = 2.0,
) -> pd.DataFrame:
    """Counts per million.

    With ``log=True`` a prior count, scaled by each column's library size
    relative to the mean library size, is added to the counts and twice that
    amount to the library sizes before taking log2. This keeps the log
    values finite and shrinks fold changes of low counts towards zero.
    """
    x = counts.to_numpy(dtype=float)
    lib = x.sum(axis=0) if lib_size is None else np.asarray(lib_size, dtype=float)
    if log:
        prior = prior_count * lib / lib.mean()
        values = np.log2((x + prior) / (lib + 2.0 * prior) * 1e6)
    else:
        values = x / lib * 1e6
    return pd.DataFrame(values, index=counts.index, columns=counts.columns)


def scale_to_mean_library(counts: pd.DataFrame) -> pd.DataFrame:
    """Divide each column by its total and multiply by the mean column total."""
    totals = counts.sum(axis=0)
    return counts / totals * totals.mean()


def published_log_values(counts: pd.DataFrame, pscnt: float) -> pd.DataFrame:
    """``log2(x + pscnt)`` of counts rescaled to the mean library size."""
    return np.log2(scale_to_mean_library(counts) + pscnt)


def compute_size_factors(
        table: CountTable,
        norm_factors: bool = True,
        lib_sizes: bool = True,
) -> CountTable:
    """Store library sizes and normalization factors for all three bases.

    Writes ``norm_factors_<basis>`` and ``lib_size_<basis>`` columns of
    ``table.samples`` for ``basis`` in :data:`BASES`, overwriting previous
    values. Calling it again on a gene-filtered table recomputes the
    statistics on the retained genes.

    Returns
    -------
    CountTable
        The same ``table``, for chaining.
    """
    smeta = table.samples
    counts = table.counts.loc[:, smeta.index]

    def per_sample(region: str, values: np.ndarray) -> pd.Series:
        cols = table.columns_for(region)
        lookup = pd.Series(values, index=smeta.loc[cols, "sample"].to_numpy())
        return smeta["sample"].map(lookup).astype(float)

    if norm_factors:
        for region, basis in ((EXON, "exon"), (INTRON, "intron")):
            half = counts.loc[:, table.columns_for(region)]
            smeta[f"norm_factors_{basis}"] = per_sample(region, calc_norm_factors(half))
        smeta["norm_factors_individual"] = calc_norm_factors(counts)

    if lib_sizes:
        for region, basis in ((EXON, "exon"), (INTRON, "intron")):
            half = counts.loc[:, table.columns_for(region)]
            smeta[f"lib_size_{basis}"] = per_sample(region, half.sum(axis=0).to_numpy(dtype=float))
        smeta["lib_size_individual"] = counts.sum(axis=0).to_numpy(dtype=float)

    return table


def activate_basis(table: CountTable, basis: str) -> CountTable:
    """Copy the library sizes and factors of ``basis`` into the active columns."""
    if basis not in BASES:
        raise InvalidPolicyError(f"Unknown size factor basis {basis!r}; must be one of {list(BASES)}.")
    table.samples["lib_size"] = table.samples[f"lib_size_{basis}"]
    table.samples["norm_factors"] = table.samples[f"norm_factors_{basis}"]
    return table
