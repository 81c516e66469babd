"""
eisa: Exon-Intron Split Analysis of RNA-seq count data.

This package separates transcriptional from post-transcriptional regulation
by comparing changes of intronic (pre-mRNA) and exonic (mature mRNA) read
counts between two conditions, using negative binomial generalized linear
models for the exon-intron interaction.

Modules
-------
counts
    Validation of exonic/intronic count matrices and the combined table.
config
    Analysis options and the published-method preset.
normalization
    TMM normalization factors, library sizes and log-CPM values.
design
    Design matrices and the exon-intron contrast.
filtering
    Selection of quantifiable genes.
fitting
    Negative binomial GLM fitting with QLF and LRT tests.
effects
    Exonic, intronic and exon-intron log2 fold changes.
stats
    FDR correction and empirical Bayes variance moderation.
pipeline
    The :func:`run_eisa` entry point.

Example
-------
>>> import eisa
>>> res = eisa.run_eisa(cnt_ex, cnt_in, ["ES", "ES", "TN", "TN"])
>>> res.contrasts.head()
>>> res_published = eisa.run_eisa(cnt_ex, cnt_in, ["ES", "ES", "TN", "TN"], method="published")
"""

__version__ = "0.1.0"

# config
from .config import (
    PUBLISHED_CONFIG,
    EISAConfig,
    resolve_config,
)

# counts
from .counts import (
    CountTable,
    combine_counts,
    fraction_intronic,
    prepare_condition,
    prepare_counts,
    split_assays,
)

# design
from .design import (
    EISADesign,
    build_design,
)

# effects
from .effects import (
    effects_from_log_values,
    effects_from_predicted,
)

# errors
from .errors import (
    ConditionCardinalityError,
    DesignRankError,
    EISAError,
    EISAWarning,
    EmptySelectionError,
    IdentifierMismatchError,
    InvalidPolicyError,
    MissingFitError,
    NormalizationError,
    PseudocountMismatchWarning,
    ReplicationWarning,
    ShapeError,
)

# filtering
from .filtering import (
    GeneSelection,
    filter_by_expr,
    select_genes,
)

# fitting
from .fitting import (
    DispersionModel,
    GLMFit,
    LRTFitter,
    QLFitter,
    StatisticalFitter,
    get_fitter,
)

# normalization
from .normalization import (
    activate_basis,
    calc_norm_factors,
    compute_size_factors,
    cpm,
    published_log_values,
    scale_to_mean_library,
)

# pipeline
from .pipeline import (
    EISAResult,
    run_eisa,
)

# stats
from .stats import (
    bh_fdr,
)

__all__ = [
    # config
    "PUBLISHED_CONFIG",
    "EISAConfig",
    "resolve_config",
    # counts
    "CountTable",
    "combine_counts",
    "fraction_intronic",
    "prepare_condition",
    "prepare_counts",
    "split_assays",
    # design
    "EISADesign",
    "build_design",
    # effects
    "effects_from_log_values",
    "effects_from_predicted",
    # errors
    "ConditionCardinalityError",
    "DesignRankError",
    "EISAError",
    "EISAWarning",
    "EmptySelectionError",
    "IdentifierMismatchError",
    "InvalidPolicyError",
    "MissingFitError",
    "NormalizationError",
    "PseudocountMismatchWarning",
    "ReplicationWarning",
    "ShapeError",
    # filtering
    "GeneSelection",
    "filter_by_expr",
    "select_genes",
    # fitting
    "DispersionModel",
    "GLMFit",
    "LRTFitter",
    "QLFitter",
    "StatisticalFitter",
    "get_fitter",
    # normalization
    "activate_basis",
    "calc_norm_factors",
    "compute_size_factors",
    "cpm",
    "published_log_values",
    "scale_to_mean_library",
    # pipeline
    "EISAResult",
    "run_eisa",
    # stats
    "bh_fdr",
]
