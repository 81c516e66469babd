"""
Selection of quantifiable genes.

A gene is quantifiable if it has enough signal in both its exonic and its
intronic counts. Three strategies are available:

``"none"``
    Keep every gene.
``"filterByExpr"``
    Apply :func:`filter_by_expr` separately to the exonic and the intronic
    half of the table (each with its own design rows) and keep genes that
    pass in both.
``"published"``
    Rescale each half to its mean library size, take ``log2(x + 8)`` and
    keep genes whose mean exceeds 5 in both halves (Gaidatzis et al. 2015).

Functions
---------
filter_by_expr
    Expression filter based on a CPM cutoff and the smallest group size.
select_genes
    Run one of the strategies above on a count table.
"""
from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

from .config import PUBLISHED
from .counts import EXON, INTRON, CountTable
from .design import EISADesign
from .errors import InvalidPolicyError, PseudocountMismatchWarning
from .normalization import cpm, published_log_values

logger = logging.getLogger(__name__)

PUBLISHED_PSEUDOCOUNT = 8.0
PUBLISHED_MIN_LOG_EXPR = 5.0


@dataclass(frozen=True)
class GeneSelection:
    """Outcome of gene selection."""

    #: Retained gene identifiers, in input order.
    genes: pd.Index
    #: Number of genes before selection.
    n_total: int
    strategy: str
    #: log2-CPM of exonic / intronic columns for all input genes.
    log_cpm_ex: pd.DataFrame
    log_cpm_in: pd.DataFrame
    #: log2(x + pscnt) of library-rescaled exonic / intronic counts, all input
    #: genes, columns labelled by sample.
    scaled_log_ex: pd.DataFrame
    scaled_log_in: pd.DataFrame

    @property
    def n_kept(self) -> int:
        return len(self.genes)


def _hat_values(X: np.ndarray) -> np.ndarray:
    """Leverages of a (possibly rank-deficient) design matrix."""
    X = np.asarray(X, dtype=float)
    H = X @ np.linalg.pinv(X)
    return np.diag(H)


def filter_by_expr(
        counts: pd.DataFrame,
        design: Optional[np.ndarray] = None,
        group=None,
        lib_size: Optional[np.ndarray] = None,
        min_count: float = 10,
        min_total_count: float = 15,
        large_n: int = 10,
        min_prop: float = 0.7,
) -> np.ndarray:
    """Flag genes with sufficiently large counts to be worth testing.

    A gene is kept if it reaches a CPM cutoff (equivalent to ``min_count``
    reads at the median library size) in at least as many columns as the
    smallest group, and its total count is at least ``min_total_count``.
    The smallest group size is derived from the design matrix leverages
    (``1 / max(leverage)``) or from ``group``; beyond ``large_n`` it grows
    only by ``min_prop`` per additional sample.

    Parameters
    ----------
    counts : pd.DataFrame
        Gene by column counts.
    design : np.ndarray, optional
        Design matrix rows for the columns of ``counts``.
    group : array-like, optional
        Group labels, used when no design is given.
    lib_size : np.ndarray, optional
        Effective library sizes; defaults to column sums.

    Returns
    -------
    np.ndarray of bool
        One flag per gene.
    """
    y = counts.to_numpy(dtype=float)
    lib = y.sum(axis=0) if lib_size is None else np.asarray(lib_size, dtype=float)

    if design is not None:
        min_sample_size = 1.0 / np.max(_hat_values(design))
    elif group is not None:
        sizes = pd.Series(np.asarray(group)).value_counts()
        min_sample_size = float(sizes[sizes > 0].min())
    else:
        min_sample_size = float(y.shape[1])

    if min_sample_size > large_n:
        min_sample_size = large_n + (min_sample_size - large_n) * min_prop

    cpm_cutoff = min_count / np.median(lib) * 1e6
    cpm_values = y / lib * 1e6
    tol = 1e-14
    keep_cpm = (cpm_values >= cpm_cutoff).sum(axis=1) >= (min_sample_size - tol)
    keep_total = y.sum(axis=1) >= (min_total_count - tol)
    return keep_cpm & keep_total


def _log_cpm(table: CountTable, region: str, prior_count: float) -> pd.DataFrame:
    cols = table.columns_for(region)
    return cpm(table.counts.loc[:, cols], lib_size=table.effective_lib_size(cols),
               log=True, prior_count=prior_count)


def select_genes(
        table: CountTable,
        design: EISADesign,
        strategy: str,
        pscnt: float,
) -> GeneSelection:
    """Select quantifiable genes of ``table``.

    ``table`` should have its ``individual`` basis active, so that every
    column is normalized on its own.

    Parameters
    ----------
    table : CountTable
    design : EISADesign
        Provides the design rows of each half for ``"filterByExpr"``.
    strategy : {"none", "filterByExpr", "published"}
    pscnt : float
        Prior count of the log-CPM values, and pseudocount of the
        ``"published"`` strategy (which expects 8).

    Returns
    -------
    GeneSelection
    """
    ex_cols = table.columns_for(EXON)
    in_cols = table.columns_for(INTRON)
    log_ex = _log_cpm(table, EXON, pscnt)
    log_in = _log_cpm(table, INTRON, pscnt)
    nl_ex = published_log_values(table.region_counts(EXON), pscnt)
    nl_in = published_log_values(table.region_counts(INTRON), pscnt)

    if strategy == "none":
        logger.info("skip filtering for quantifiable genes")
        keep = np.ones(table.n_genes, dtype=bool)
    else:
        logger.info("filtering quantifiable genes...")
        if strategy == "filterByExpr":
            keep_ex = filter_by_expr(
                table.counts.loc[:, ex_cols],
                design=design.rows(ex_cols).to_numpy(dtype=float),
                lib_size=table.effective_lib_size(ex_cols),
            )
            keep_in = filter_by_expr(
                table.counts.loc[:, in_cols],
                design=design.rows(in_cols).to_numpy(dtype=float),
                lib_size=table.effective_lib_size(in_cols),
            )
            keep = keep_ex & keep_in
        elif strategy == PUBLISHED:
            if pscnt != PUBLISHED_PSEUDOCOUNT:
                warnings.warn(
                    f"Using pscnt={pscnt:g} instead of {PUBLISHED_PSEUDOCOUNT:g} deviates "
                    "from the published gene selection.",
                    PseudocountMismatchWarning,
                )
            keep = ((nl_ex.mean(axis=1) > PUBLISHED_MIN_LOG_EXPR)
                    & (nl_in.mean(axis=1) > PUBLISHED_MIN_LOG_EXPR)).to_numpy()
        else:
            raise InvalidPolicyError(f"Unknown gene selection strategy {strategy!r}.")

        n_kept = int(keep.sum())
        pct = round(n_kept * 100 / table.n_genes, 1) if table.n_genes else 0.0
        logger.info(f"keeping {n_kept} from {table.n_genes} ({pct}%)")

    return GeneSelection(
        genes=table.genes[keep],
        n_total=table.n_genes,
        strategy=strategy,
        log_cpm_ex=log_ex,
        log_cpm_in=log_in,
        scaled_log_ex=nl_ex,
        scaled_log_in=nl_in,
    )
