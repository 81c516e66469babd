"""
Exonic, intronic and exon-intron log2 fold changes.

For every gene three effects of the second versus the first condition are
reported:

``Dex``
    exonic log2 fold change (change in mature mRNA),
``Din``
    intronic log2 fold change (change in pre-mRNA, i.e. transcription),
``Dex.Din``
    their difference, the post-transcriptional component.

They are either read from the coefficients of a model fitted to
prior-count augmented data (``effects="predFC"``), or computed as mean
differences of log values (``effects="published"``): library-rescaled
``log2(x + pscnt)``, or log-CPM after ``filterByExpr`` gene selection.
"""
from __future__ import annotations

import numpy as np
import pandas as pd

from .design import C1_EXON, C2_EXON, EISADesign

EFFECT_COLUMNS = ["Dex", "Din", "Dex.Din"]


def _effect_frame(dex, din, dex_din, index) -> pd.DataFrame:
    return pd.DataFrame(
        {"Dex": np.asarray(dex, dtype=float),
         "Din": np.asarray(din, dtype=float),
         "Dex.Din": np.asarray(dex_din, dtype=float)},
        index=index,
    )


def _level_mean(lfc: pd.DataFrame, design: EISADesign, level: str) -> pd.Series:
    """Mean over the sample coefficients of one condition level.

    Only samples with a design column are averaged; the reference sample has
    none.
    """
    coefs = [design.sample_coefs.get(s) for s, lvl in design.sample_levels.items() if lvl == level]
    return lfc[[c for c in coefs if c is not None]].mean(axis=1)


def effects_from_predicted(lfc: pd.DataFrame, design: EISADesign) -> pd.DataFrame:
    """Derive effects from predicted log2 fold-change coefficients.

    Parameters
    ----------
    lfc : pd.DataFrame
        Genes by design coefficients, log2 scale (see
        :meth:`eisa.fitting.StatisticalFitter.predicted_fold_change`).
    design : EISADesign
        Design the coefficients belong to.

    Returns
    -------
    pd.DataFrame
        Columns ``Dex``, ``Din``, ``Dex.Din``.

    Notes
    -----
    With sample effects, ``Din`` is the difference between the mean sample
    coefficients of the two conditions, ``Dex.Din`` is ``c2_exon - c1_exon``
    and ``Dex = Din + Dex.Din``. The interaction is thus taken from the full
    model, consistent with the interaction test; a simpler model without
    sample effects would be an alternative source for all three effects.

    Without sample effects, ``Din`` is the condition coefficient (intron is
    the reference region), ``Dex.Din`` the interaction coefficient and
    ``Dex`` their sum.
    """
    if design.model_samples:
        lvl1, lvl2 = design.levels
        din = _level_mean(lfc, design, lvl2) - _level_mean(lfc, design, lvl1)
        dex_din = lfc[C2_EXON] - lfc[C1_EXON]
    else:
        din = lfc[design.condition_coef]
        dex_din = lfc[design.interaction_coefs[0]]
    return _effect_frame(din + dex_din, din, dex_din, lfc.index)


def effects_from_log_values(
        log_ex: pd.DataFrame,
        log_in: pd.DataFrame,
        condition: pd.Categorical,
) -> pd.DataFrame:
    """Mean log-value differences between the two condition levels.

    ``log_ex`` and ``log_in`` are genes by samples, with samples in the
    order of ``condition``.
    """
    lvl1, lvl2 = condition.categories[:2]
    i1 = (condition == lvl1)
    i2 = (condition == lvl2)
    dex = log_ex.loc[:, i2].mean(axis=1) - log_ex.loc[:, i1].mean(axis=1)
    din = log_in.loc[:, i2].mean(axis=1) - log_in.loc[:, i1].mean(axis=1)
    return _effect_frame(dex, din, dex - din, log_ex.index)
