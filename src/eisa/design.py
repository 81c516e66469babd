"""
Design matrices and contrast vectors for the exon-intron interaction.

Two model structures are supported, both with one row per column of the
combined count table:

* without sample effects::

      ~ region * condition

  with ``intron`` as reference region and the first condition level as
  reference condition. The interaction coefficient is the difference between
  the exonic and the intronic log fold change.

* with sample effects::

      ~ sample + c1_exon + c2_exon

  where ``c1_exon`` / ``c2_exon`` mark the exonic rows of samples from the
  first / second condition. Sample coefficients absorb effects shared by the
  exonic and intronic counts of a sample; ``c2_exon - c1_exon`` is the
  exon-intron interaction.

Classes
-------
EISADesign
    Design matrix, contrast vector and the names of the coefficients that
    effects are read from.

Functions
---------
build_design
    Build an :class:`EISADesign` for a count table.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
import patsy

from .counts import EXON, INTRON, CountTable
from .errors import DesignRankError

C1_EXON = "c1_exon"
C2_EXON = "c2_exon"


@dataclass(frozen=True)
class EISADesign:
    """Design matrix with a consistent contrast vector."""

    #: Rows are the column labels of the combined count table.
    matrix: pd.DataFrame
    #: One weight per design column.
    contrast: np.ndarray
    model_samples: bool
    #: (first, second) condition level; the contrast is second - first.
    levels: tuple[str, str]
    #: Sample name -> design column of its sample effect (None for the reference sample).
    sample_coefs: dict[str, Optional[str]]
    #: Sample name -> condition level.
    sample_levels: dict[str, str]
    #: Condition coefficient (no-sample-effects mode only).
    condition_coef: Optional[str] = None
    #: Coefficient(s) whose contrast defines the interaction.
    interaction_coefs: tuple[str, ...] = ()

    @property
    def coef_names(self) -> list[str]:
        return list(self.matrix.columns)

    @property
    def contrast_name(self) -> str:
        return f"{self.levels[1]} - {self.levels[0]}"

    def rows(self, labels) -> pd.DataFrame:
        """Design rows for a subset of count table columns."""
        return self.matrix.loc[list(labels)]


def _check_full_rank(X: pd.DataFrame) -> None:
    rank = np.linalg.matrix_rank(X.to_numpy(dtype=float))
    if rank < X.shape[1]:
        raise DesignRankError(
            f"Design matrix with {X.shape[1]} columns has rank {rank}; "
            "check for duplicated or degenerate samples."
        )


def _design_frame(table: CountTable) -> pd.DataFrame:
    smeta = table.samples
    levels = list(smeta["condition"].cat.categories)
    # table order; string sorting would put s1000 before s999
    sample_ids = list(pd.unique(smeta["sample_id"]))
    return pd.DataFrame({
        "region": pd.Categorical(smeta["region"], categories=[INTRON, EXON]),
        "condition": pd.Categorical(smeta["condition"].astype(str), categories=levels),
        "sample": pd.Categorical(smeta["sample_id"], categories=sample_ids),
    }, index=smeta.index)


def build_design(table: CountTable, model_samples: bool = True) -> EISADesign:
    """Build the design matrix and the exon-intron contrast for ``table``.

    Parameters
    ----------
    table : CountTable
        Combined count table; its ``samples`` frame supplies the region,
        sample and condition of every row.
    model_samples : bool, default True
        Include sample effects.

    Returns
    -------
    EISADesign
        Design whose row labels equal ``table.samples.index``.

    Raises
    ------
    DesignRankError
        The design is not of full column rank.

    Examples
    --------
    >>> design = build_design(table, model_samples=False)
    >>> design.coef_names
    ['Intercept', 'region[T.exon]', 'condition[T.B]', 'region[T.exon]:condition[T.B]']
    >>> design.contrast
    array([0., 0., 0., 1.])
    """
    data = _design_frame(table)
    levels = tuple(data["condition"].cat.categories)
    ex_rows = table.samples[table.samples["region"] == EXON]
    sample_levels = dict(zip(ex_rows["sample"], ex_rows["condition"].astype(str)))

    if model_samples:
        X = patsy.dmatrix("sample", data, return_type="dataframe")
        is_exon = (data["region"] == EXON).to_numpy()
        X[C1_EXON] = (is_exon & (data["condition"] == levels[0]).to_numpy()).astype(float)
        X[C2_EXON] = (is_exon & (data["condition"] == levels[1]).to_numpy()).astype(float)

        contrast = np.zeros(X.shape[1])
        contrast[X.columns.get_loc(C2_EXON)] = 1.0
        contrast[X.columns.get_loc(C1_EXON)] = -1.0

        id_to_name = dict(zip(table.samples["sample_id"], table.samples["sample"]))
        sample_coefs = {}
        for sid in data["sample"].cat.categories:
            coef = f"sample[T.{sid}]"
            sample_coefs[id_to_name[sid]] = coef if coef in X.columns else None

        design = EISADesign(
            matrix=X, contrast=contrast, model_samples=True, levels=levels,
            sample_coefs=sample_coefs, sample_levels=sample_levels, interaction_coefs=(C1_EXON, C2_EXON),
        )
    else:
        X = patsy.dmatrix("region * condition", data, return_type="dataframe")
        # interaction is the last column
        contrast = np.zeros(X.shape[1])
        contrast[-1] = 1.0

        design = EISADesign(
            matrix=X, contrast=contrast, model_samples=False, levels=levels,
            sample_coefs={}, sample_levels=sample_levels, condition_coef=f"condition[T.{levels[1]}]",
            interaction_coefs=(X.columns[-1],),
        )

    X.index = table.samples.index
    X.index.name = None
    _check_full_rank(X)
    return design
