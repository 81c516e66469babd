"""
Input validation and the combined exon/intron count table.

The exonic and intronic gene-by-sample matrices are validated against each
other and concatenated into a single gene-by-(2 x samples) table. Every
column of that table is tagged with its region (``exon``/``intron``), its
sample and its condition, so that downstream code selects columns by tag
rather than by position.

Functions
---------
split_assays
    Extract exonic and intronic counts from a combined structure.
prepare_counts
    Validate and harmonize a pair of count matrices.
prepare_condition
    Coerce a condition vector into a two-level categorical.
combine_counts
    Build a :class:`CountTable` from validated inputs.

Classes
-------
CountTable
    Combined counts plus per-column sample metadata.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import ConditionCardinalityError, IdentifierMismatchError, ShapeError

logger = logging.getLogger(__name__)

EXON = "exon"
INTRON = "intron"
REGIONS = (EXON, INTRON)

# column label prefixes of the combined table
_PREFIX = {EXON: "Ex", INTRON: "In"}

# recognized (exonic, intronic) assay names of combined inputs
ASSAY_PAIRS = (("exon", "intron"), ("spliced", "unspliced"))


def split_assays(obj) -> Tuple[object, object]:
    """Extract exonic and intronic counts from a combined structure.

    Parameters
    ----------
    obj : mapping or object with a ``layers`` mapping
        Holds the two assays under one of the names in :data:`ASSAY_PAIRS`.
        Objects with ``layers`` (AnnData-style) are expected to store genes
        in rows and samples in columns.

    Returns
    -------
    tuple
        ``(exonic, intronic)`` counts.
    """
    assays = obj if isinstance(obj, Mapping) else getattr(obj, "layers", None)
    if assays is None:
        raise ShapeError(f"Cannot extract count assays from {type(obj).__name__}.")

    for ex_name, in_name in ASSAY_PAIRS:
        if ex_name in assays and in_name in assays:
            return assays[ex_name], assays[in_name]

    names = [f"'{a}'/'{b}'" for a, b in ASSAY_PAIRS]
    raise ShapeError(f"Combined input needs assays named {' or '.join(names)}.")


def _as_count_frame(x, name: str) -> Tuple[pd.DataFrame, bool, bool]:
    """Coerce ``x`` to a numeric DataFrame, reporting which labels were supplied."""
    if isinstance(x, pd.DataFrame):
        df = x.copy()
        has_rows = not isinstance(df.index, pd.RangeIndex)
        has_cols = not isinstance(df.columns, pd.RangeIndex)
    else:
        arr = np.asarray(x)
        if arr.ndim != 2:
            raise ShapeError(f"'{name}' must be a two-dimensional gene by sample matrix.")
        df = pd.DataFrame(arr)
        has_rows = has_cols = False

    if df.ndim != 2 or df.shape[1] == 0:
        raise ShapeError(f"'{name}' must contain at least one sample column.")

    try:
        df = df.apply(pd.to_numeric, errors="raise")
    except (TypeError, ValueError) as e:
        raise ShapeError(f"'{name}' contains non-numeric values.") from e

    values = df.to_numpy(dtype=float)
    if np.isnan(values).any():
        raise ShapeError(f"'{name}' contains missing values.")
    if (values < 0).any():
        raise ShapeError(f"'{name}' contains negative counts.")

    return df.astype(float), has_rows, has_cols


def _sequential_labels(n: int) -> pd.Index:
    return pd.Index([str(i) for i in range(1, n + 1)])


def prepare_counts(cnt_ex, cnt_in=None) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Validate and harmonize exonic and intronic count matrices.

    Parameters
    ----------
    cnt_ex : DataFrame, array-like, or combined structure
        Gene by sample exonic counts, or a structure accepted by
        :func:`split_assays` (in which case ``cnt_in`` is ignored).
    cnt_in : DataFrame or array-like, optional
        Gene by sample intronic counts with the same layout as ``cnt_ex``.

    Returns
    -------
    tuple of pd.DataFrame
        ``(exonic, intronic)`` float matrices with identical string labels.
        Missing labels are synthesized as ``"1"``, ``"2"``, ...

    Raises
    ------
    ShapeError
        Inputs are not numeric matrices or differ in dimensions.
    IdentifierMismatchError
        Supplied row or column labels differ between the two matrices.
    """
    if isinstance(cnt_ex, Mapping) or hasattr(cnt_ex, "layers"):
        cnt_ex, cnt_in = split_assays(cnt_ex)
    if cnt_in is None:
        raise ShapeError("Intronic counts are required when 'cnt_ex' is a single matrix.")

    ex, ex_rows, ex_cols = _as_count_frame(cnt_ex, "cnt_ex")
    intr, in_rows, in_cols = _as_count_frame(cnt_in, "cnt_in")

    if ex.shape != intr.shape:
        raise ShapeError(
            f"Exonic {ex.shape} and intronic {intr.shape} count matrices differ in dimensions."
        )

    n_genes, n_samples = ex.shape
    if not (ex_rows or in_rows) or not (ex_cols or in_cols):
        logger.debug(f"using sequential identifiers for {n_genes} genes x {n_samples} samples")
    for df, has_rows, has_cols in ((ex, ex_rows, ex_cols), (intr, in_rows, in_cols)):
        df.index = df.index.astype(str) if has_rows else _sequential_labels(n_genes)
        df.columns = df.columns.astype(str) if has_cols else _sequential_labels(n_samples)

    if not ex.index.equals(intr.index):
        raise IdentifierMismatchError("Gene identifiers differ between exonic and intronic counts.")
    if not ex.columns.equals(intr.columns):
        raise IdentifierMismatchError("Sample identifiers differ between exonic and intronic counts.")
    if ex.index.has_duplicates or ex.columns.has_duplicates:
        raise IdentifierMismatchError("Gene and sample identifiers must be unique.")

    return ex, intr


def prepare_condition(cond, n_samples: int) -> pd.Categorical:
    """Coerce ``cond`` into a categorical with exactly two levels.

    Numeric and text labels become categories in order of first appearance;
    an existing categorical keeps its own category order, with unused
    categories removed.

    Raises
    ------
    ConditionCardinalityError
        ``cond`` does not have one label per sample or not exactly two levels.
    """
    if cond is None:
        raise ConditionCardinalityError("A condition vector is required.")

    if isinstance(cond, pd.Categorical) or (
            isinstance(cond, pd.Series) and isinstance(cond.dtype, pd.CategoricalDtype)):
        cat = pd.Categorical(cond).remove_unused_categories()
    else:
        values = pd.Series(np.asarray(cond).ravel())
        levels = pd.unique(values)
        cat = pd.Categorical(values, categories=levels)

    if len(cat) != n_samples:
        raise ConditionCardinalityError(
            f"Condition vector has {len(cat)} entries for {n_samples} samples."
        )
    if cat.isna().any():
        raise ConditionCardinalityError("Condition vector contains missing values.")
    if len(cat.categories) != 2:
        raise ConditionCardinalityError(
            f"Condition vector must have exactly two levels, found {len(cat.categories)}."
        )
    return cat.rename_categories([str(c) for c in cat.categories])


@dataclass
class CountTable:
    """Combined exonic and intronic counts with tagged columns.

    ``counts`` is a genes by (2 x samples) frame whose exonic columns come
    first, followed by the intronic columns in the same sample order.
    ``samples`` has one row per column of ``counts`` with the tags
    ``region``, ``sample``, ``sample_id`` and ``condition``, plus the
    library-size and normalization-factor columns written by
    :func:`eisa.normalization.compute_size_factors`.
    """

    counts: pd.DataFrame
    samples: pd.DataFrame

    @property
    def n_genes(self) -> int:
        return self.counts.shape[0]

    @property
    def n_samples(self) -> int:
        """Number of biological samples (half the number of columns)."""
        return self.counts.shape[1] // 2

    @property
    def genes(self) -> pd.Index:
        return self.counts.index

    @property
    def condition(self) -> pd.Categorical:
        """Condition per biological sample, in sample order."""
        ex = self.samples[self.samples["region"] == EXON]
        return pd.Categorical(ex["condition"])

    def columns_for(self, region: Optional[str] = None, level: Optional[str] = None) -> list[str]:
        """Column labels matching a region and/or condition level."""
        mask = np.ones(len(self.samples), dtype=bool)
        if region is not None:
            mask &= (self.samples["region"] == region).to_numpy()
        if level is not None:
            mask &= (self.samples["condition"].astype(str) == level).to_numpy()
        return self.samples.index[mask].tolist()

    def region_counts(self, region: str) -> pd.DataFrame:
        """Counts of one region, with columns relabelled by sample name."""
        cols = self.columns_for(region)
        out = self.counts.loc[:, cols]
        out.columns = self.samples.loc[cols, "sample"].tolist()
        return out

    def effective_lib_size(self, columns: Optional[Sequence[str]] = None) -> np.ndarray:
        """Library size times normalization factor of the active basis."""
        s = self.samples if columns is None else self.samples.loc[list(columns)]
        return (s["lib_size"] * s["norm_factors"]).to_numpy(dtype=float)

    def subset_genes(self, genes: Sequence[str]) -> "CountTable":
        return CountTable(counts=self.counts.loc[list(genes)].copy(), samples=self.samples.copy())


def combine_counts(ex: pd.DataFrame, intr: pd.DataFrame, cond: pd.Categorical) -> CountTable:
    """Concatenate validated exonic and intronic counts into a :class:`CountTable`.

    Column labels are ``"Ex.<sample>"`` and ``"In.<sample>"``. Samples are
    additionally given positional ids ``s001``, ``s002``, ... used to name
    sample coefficients of the design matrix.
    """
    n = ex.shape[1]
    sample_ids = [f"s{i:03d}" for i in range(1, n + 1)]
    frames = []
    meta = []
    for region, df in ((EXON, ex), (INTRON, intr)):
        labels = [f"{_PREFIX[region]}.{s}" for s in df.columns]
        frames.append(df.set_axis(labels, axis=1))
        meta.append(pd.DataFrame({
            "region": region,
            "sample": list(df.columns),
            "sample_id": sample_ids,
            "condition": pd.Categorical(cond, categories=cond.categories),
        }, index=labels))

    counts = pd.concat(frames, axis=1)
    samples = pd.concat(meta, axis=0)
    samples["condition"] = pd.Categorical(samples["condition"], categories=cond.categories)
    samples["lib_size"] = counts.sum(axis=0).to_numpy(dtype=float)
    samples["norm_factors"] = 1.0
    return CountTable(counts=counts, samples=samples)


def fraction_intronic(ex: pd.DataFrame, intr: pd.DataFrame) -> pd.Series:
    """Fraction of intronic counts per sample."""
    ex_tot = ex.sum(axis=0)
    in_tot = intr.sum(axis=0)
    return (in_tot / (ex_tot + in_tot)).rename("frac_in")
