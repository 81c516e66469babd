"""
Exon-Intron Split Analysis (EISA) pipeline.

:func:`run_eisa` takes exonic and intronic gene-level counts for two
conditions and performs all steps of EISA: normalization, selection of
quantifiable genes, a negative binomial GLM test of the exon-intron
interaction, and calculation of exonic, intronic and exon-intron log2 fold
changes.

Reference
---------
Gaidatzis D., Burger L., Florescu M. and Stadler M.B. (2015). Analysis of
intronic and exonic reads in RNA-seq data characterizes transcriptional and
post-transcriptional regulation. Nature Biotechnology 33(7):722-729.
"""
from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import pandas as pd

from .config import EISAConfig, canonical_name, resolve_config
from .counts import (
    CountTable,
    combine_counts,
    fraction_intronic,
    prepare_condition,
    prepare_counts,
)
from .design import build_design
from .effects import effects_from_log_values, effects_from_predicted
from .errors import EmptySelectionError, InvalidPolicyError, MissingFitError, ReplicationWarning
from .filtering import GeneSelection, select_genes
from .fitting import GLMFit, StatisticalFitter, get_fitter
from .normalization import activate_basis, compute_size_factors

logger = logging.getLogger(__name__)

MIN_REPLICATES = 2


@dataclass(frozen=True)
class EISAResult:
    """Outcome of :func:`run_eisa`."""

    #: Fraction of intronic counts per sample.
    frac_in: pd.Series
    #: ``"<second level> - <first level>"``.
    contrast_name: str
    #: Quantifiable genes by ``Dex``, ``Din``, ``Dex.Din``.
    contrasts: pd.DataFrame
    #: Count table of quantifiable genes with the active normalization.
    table: CountTable
    #: GLM fit, or None if the statistical analysis was skipped.
    fit: Optional[GLMFit]
    #: Test of the exon-intron interaction, one row per quantifiable gene
    #: (empty if the statistical analysis was skipped).
    tab_ex_in: pd.DataFrame
    #: Contrast vector of the interaction test (None if skipped).
    contr_ex_in: Optional[np.ndarray]
    design_matrix: pd.DataFrame
    #: Resolved parameters, including ``method``.
    params: dict
    quant_genes: pd.Index
    #: log2-CPM of exonic / intronic columns of quantifiable genes.
    log_cpm_ex: pd.DataFrame
    log_cpm_in: pd.DataFrame


def _has_replicates(condition: pd.Categorical) -> bool:
    per_level = pd.Series(condition).value_counts()
    return bool((per_level >= MIN_REPLICATES).all())


def _effect_log_values(selection: GeneSelection, strategy: str, table: CountTable) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Exonic and intronic log values used by ``effects="published"``.

    ``filterByExpr`` uses the log-CPM values of the individually normalized
    columns; the other strategies use library-rescaled ``log2(x + pscnt)``.
    Columns are labelled by sample.
    """
    if strategy == "filterByExpr":
        return _by_sample(selection.log_cpm_ex, table), _by_sample(selection.log_cpm_in, table)
    return selection.scaled_log_ex, selection.scaled_log_in


def _by_sample(df: pd.DataFrame, table: CountTable) -> pd.DataFrame:
    return df.set_axis(table.samples.loc[df.columns, "sample"].tolist(), axis=1)


def run_eisa(
        cnt_ex,
        cnt_in=None,
        cond=None,
        method: Optional[str] = None,
        *,
        config: Optional[EISAConfig] = None,
        fitter: Optional[StatisticalFitter] = None,
        genes: Optional[pd.DataFrame] = None,
        **options,
) -> EISAResult:
    """Run Exon-Intron Split Analysis.

    Parameters
    ----------
    cnt_ex : pd.DataFrame, array-like, or combined structure
        Gene by sample exonic counts, or a mapping / object with ``layers``
        holding assays ``exon``/``intron`` or ``spliced``/``unspliced`` (in
        which case ``cnt_in`` is ignored).
    cnt_in : pd.DataFrame or array-like, optional
        Gene by sample intronic counts, same layout as ``cnt_ex``.
    cond : array-like or pd.Categorical
        Two-level grouping of the samples. The contrast is defined as second
        level minus first level (order of first appearance for plain
        labels).
    method : {None, "published"}
        ``"published"`` applies the options of Gaidatzis et al. (2015)
        (see :data:`eisa.config.PUBLISHED_CONFIG`), overriding ``config``
        and ``options``.
    config : EISAConfig, optional
        Analysis options. Mutually exclusive with ``options``.
    fitter : StatisticalFitter, optional
        Fitting engine; defaults to :func:`eisa.fitting.get_fitter` for the
        configured framework.
    genes : pd.DataFrame, optional
        Gene annotation indexed by gene id, prepended to ``tab_ex_in``.
    **options
        Individual :class:`~eisa.config.EISAConfig` fields, e.g.
        ``gene_selection="none"``.

    Returns
    -------
    EISAResult

    Raises
    ------
    ShapeError, IdentifierMismatchError, ConditionCardinalityError
        Invalid inputs.
    InvalidPolicyError
        Invalid options.
    EmptySelectionError
        No gene is quantifiable.
    MissingFitError
        ``effects="predFC"`` with fewer than two replicates per condition.

    Examples
    --------
    >>> res = run_eisa(cnt_ex, cnt_in, ["ES", "ES", "TN", "TN"])
    >>> res.contrasts.head()
    >>> res.tab_ex_in.sort_values("FDR").head()
    """
    logger.info("checking arguments")
    ex, intr = prepare_counts(cnt_ex, cnt_in)
    condition = prepare_condition(cond, ex.shape[1])
    cfg = resolve_config(method, config, **options)
    if fitter is None:
        fitter = get_fitter(cfg.stat_framework)
    elif fitter.framework != cfg.stat_framework:
        raise InvalidPolicyError(
            f"Fitter framework {fitter.framework!r} does not match "
            f"stat_framework={cfg.stat_framework!r}."
        )

    frac_in = fraction_intronic(ex, intr)

    table = combine_counts(ex, intr, condition)
    compute_size_factors(table)
    design = build_design(table, model_samples=cfg.model_samples)

    # gene selection normalizes every column on its own
    activate_basis(table, "individual")
    selection = select_genes(table, design, cfg.gene_selection, cfg.pscnt)
    if selection.n_kept == 0:
        raise EmptySelectionError(
            f"None of {selection.n_total} genes passed gene_selection={cfg.gene_selection!r}."
        )
    quant_genes = selection.genes

    if cfg.gene_selection != "none":
        table = table.subset_genes(quant_genes)
        if cfg.recalc_norm_fact_after_filt or cfg.recalc_lib_size_after_filt:
            compute_size_factors(
                table,
                norm_factors=cfg.recalc_norm_fact_after_filt,
                lib_sizes=cfg.recalc_lib_size_after_filt,
            )
    activate_basis(table, cfg.size_factor)

    dispersion_model = None
    fit = None
    contr = None
    if not _has_replicates(condition):
        warnings.warn(
            f"Need at least {MIN_REPLICATES} replicates per condition to perform "
            "statistical analysis. 'tab_ex_in' will be empty.",
            ReplicationWarning,
        )
        tab = pd.DataFrame()
    else:
        logger.info("fitting statistical model...")
        dispersion_model = fitter.estimate_dispersion(table, design)
        fit = fitter.fit_glm(dispersion_model, design)
        contr = design.contrast.copy()
        tab = fitter.test_contrast(fit, contr)
        if genes is not None:
            annot = pd.DataFrame(genes).copy()
            annot.index = annot.index.astype(str)
            tab = pd.concat([annot.reindex(tab.index), tab], axis=1)
        logger.info("fitting statistical model done")

    logger.info("calculating log-fold changes...")
    if cfg.effects == "predFC":
        if dispersion_model is None:
            raise MissingFitError(
                "effects='predFC' requires a fitted model - rerun with effects='published'"
            )
        lfc = fitter.predicted_fold_change(dispersion_model, design, cfg.pscnt)
        contrasts = effects_from_predicted(lfc, design)
    else:
        log_ex, log_in = _effect_log_values(selection, cfg.gene_selection, table)
        contrasts = effects_from_log_values(log_ex.loc[quant_genes], log_in.loc[quant_genes], condition)
    logger.info("calculating log-fold changes done")

    return EISAResult(
        frac_in=frac_in,
        contrast_name=design.contrast_name,
        contrasts=contrasts,
        table=table,
        fit=fit,
        tab_ex_in=tab,
        contr_ex_in=contr,
        design_matrix=design.matrix,
        params={"method": canonical_name(method), **cfg.to_dict()},
        quant_genes=quant_genes,
        log_cpm_ex=selection.log_cpm_ex.loc[quant_genes],
        log_cpm_in=selection.log_cpm_in.loc[quant_genes],
    )
