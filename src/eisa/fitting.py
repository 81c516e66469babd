"""
Negative binomial GLM fitting and testing of the exon-intron contrast.

The pipeline talks to the fitting engine only through
:class:`StatisticalFitter`, so the numerical method can be exchanged. Two
implementations are provided, both fitting one negative binomial GLM
(NB2 parameterization, ``Var(Y) = mu + alpha * mu^2``) per gene with
statsmodels:

:class:`LRTFitter`
    Gene-wise (tagwise) dispersions and likelihood ratio tests.
:class:`QLFitter`
    Common dispersion, gene-wise quasi-dispersions moderated by an
    empirical Bayes prior, and quasi-likelihood F-tests.

Dispersions are estimated by alternating GLM fits with a method-of-moments
update of a common dispersion. Gene-wise estimates are then shrunk towards
the common value.

Functions
---------
estimate_alpha_nb2_moments
    Method-of-moments NB2 dispersion from observed and fitted values.
get_fitter
    Return the fitter for a statistical framework.
"""
from __future__ import annotations

import logging
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import stats as sps
from statsmodels.tools.sm_exceptions import ConvergenceWarning, PerfectSeparationWarning

from .counts import CountTable
from .design import EISADesign
from .errors import InvalidPolicyError
from .normalization import cpm
from .stats import bh_fdr, fit_f_dist, squeeze_var

logger = logging.getLogger(__name__)


def estimate_alpha_nb2_moments(y: np.ndarray, mu: np.ndarray) -> float:
    """Estimate NB2 dispersion parameter using method of moments.

    The estimator solves ``sum((y - mu)^2 - mu) = alpha * sum(mu^2)``.

    Parameters
    ----------
    y : np.ndarray
        Observed counts.
    mu : np.ndarray
        Fitted mean values from the model.

    Returns
    -------
    float
        Estimated alpha, clipped to be non-negative.

    Examples
    --------
    >>> y = np.array([10, 20, 5, 15])
    >>> mu = np.array([12, 18, 7, 14])
    >>> alpha = estimate_alpha_nb2_moments(y, mu)
    """
    mu = np.clip(mu, 1e-9, None)
    num = np.sum((y - mu) ** 2 - mu)
    den = np.sum(mu**2)
    alpha = num / max(den, 1e-12)
    return float(max(alpha, 0.0))


@dataclass
class DispersionModel:
    """Counts, offsets and dispersion estimates for a fixed design."""

    #: Genes by design rows.
    counts: pd.DataFrame
    #: Design matrix used for estimation.
    design: pd.DataFrame
    #: log effective library size per design row.
    offset: np.ndarray
    common_dispersion: float
    tagwise_dispersion: np.ndarray
    #: Average log2-CPM per gene.
    ave_log_cpm: np.ndarray

    @property
    def genes(self) -> pd.Index:
        return self.counts.index

    @property
    def df_residual(self) -> int:
        return self.design.shape[0] - self.design.shape[1]


@dataclass
class GLMFit:
    """Per-gene GLM fit."""

    framework: str
    #: Genes by design columns, natural log scale.
    coefficients: pd.DataFrame
    deviance: np.ndarray
    df_residual: int
    #: NB dispersion used for each gene.
    dispersion: np.ndarray
    dispersion_model: DispersionModel
    #: Posterior quasi-dispersions (QLF only).
    ql_dispersion: Optional[np.ndarray] = None
    #: Residual plus prior degrees of freedom of ``ql_dispersion`` (QLF only).
    df_total: Optional[float] = None

    @property
    def design(self) -> pd.DataFrame:
        return self.dispersion_model.design


def _fit_gene(
        y: np.ndarray,
        X: np.ndarray,
        offset: np.ndarray,
        alpha: float,
) -> Tuple[np.ndarray, float, bool]:
    """Fit one NB GLM; returns (params, deviance, converged)."""
    if y.sum() == 0:
        return np.full(X.shape[1], np.nan), 0.0, True

    fam = sm.families.NegativeBinomial(alpha=float(alpha))
    model = sm.GLM(y, X, family=fam, offset=offset)
    converged = True
    try:
        res = model.fit(maxiter=100)
        params = np.asarray(res.params, dtype=float)
        converged = bool(res.converged)
        if not np.all(np.isfinite(params)):
            raise ValueError("non-finite coefficients")
    except (ValueError, np.linalg.LinAlgError):
        warnings.warn(
            "NB GLM fit failed for a gene; using L2 regularized coefficients.",
            RuntimeWarning,
        )
        res = model.fit_regularized(alpha=0.01, L1_wt=0)
        params = np.asarray(res.params, dtype=float)

    mu = np.exp(X @ params + offset)
    deviance = float(fam.deviance(y, mu))
    return params, deviance, converged


def fit_genes(
        counts: np.ndarray,
        X: np.ndarray,
        offset: np.ndarray,
        dispersion: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Fit an NB GLM to every row of ``counts``.

    Returns
    -------
    params : np.ndarray
        Genes by coefficients (natural log scale).
    deviance : np.ndarray
    mu : np.ndarray
        Genes by observations fitted means.
    """
    n_genes = counts.shape[0]
    params = np.full((n_genes, X.shape[1]), np.nan)
    deviance = np.zeros(n_genes)
    n_unconverged = 0

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ConvergenceWarning)
        warnings.simplefilter("ignore", PerfectSeparationWarning)
        for g in range(n_genes):
            params[g], deviance[g], converged = _fit_gene(counts[g], X, offset, dispersion[g])
            n_unconverged += not converged

    if n_unconverged:
        logger.warning(f"GLM fit did not converge for {n_unconverged} of {n_genes} genes")

    with np.errstate(over="ignore", invalid="ignore"):
        mu = np.exp(np.nan_to_num(params) @ X.T + offset)
    mu[counts.sum(axis=1) == 0] = 0.0
    return params, deviance, mu


class StatisticalFitter(ABC):
    """Dispersion estimation, GLM fitting and contrast testing."""

    #: Name of the framework, e.g. ``"QLF"``.
    framework: str = ""
    #: Name of the test statistic column of the result table.
    statistic: str = ""

    @abstractmethod
    def estimate_dispersion(self, table: CountTable, design: EISADesign) -> DispersionModel:
        """Estimate NB dispersions for the active normalization of ``table``."""

    @abstractmethod
    def fit_glm(self, dispersion_model: DispersionModel, design: EISADesign) -> GLMFit:
        """Fit the per-gene GLMs."""

    @abstractmethod
    def test_contrast(self, fit: GLMFit, contrast: np.ndarray) -> pd.DataFrame:
        """Test a contrast of the coefficients for every gene."""

    @abstractmethod
    def predicted_fold_change(
            self,
            dispersion_model: DispersionModel,
            design: EISADesign,
            prior_count: float,
    ) -> pd.DataFrame:
        """Coefficients (log2 scale) of a fit to prior-count augmented data."""


class NBGLMFitter(StatisticalFitter):
    """Shared negative binomial GLM machinery of the LRT and QLF fitters.

    Parameters
    ----------
    max_iter : int, default 3
        Maximum rounds of common-dispersion updates.
    alpha_init : float, default 0.1
        Starting common dispersion.
    prior_df : float, default 10
        Weight of the common dispersion when shrinking gene-wise estimates.
    """

    def __init__(self, max_iter: int = 3, alpha_init: float = 0.1, prior_df: float = 10.0):
        self.max_iter = max_iter
        self.alpha_init = alpha_init
        self.prior_df = prior_df

    def _gene_moments(self, Y: np.ndarray, X: np.ndarray, offset: np.ndarray, alpha: float) -> np.ndarray:
        n, p = X.shape
        _, _, mu = fit_genes(Y, X, offset, np.full(Y.shape[0], alpha))
        # moments are computed around fitted means; correct for the p fitted coefficients
        raw = np.array([estimate_alpha_nb2_moments(Y[g], mu[g]) for g in range(Y.shape[0])])
        return raw * n / (n - p)

    def estimate_dispersion(self, table: CountTable, design: EISADesign) -> DispersionModel:
        rows = design.matrix.index
        counts = table.counts.loc[:, rows]
        X = design.matrix.to_numpy(dtype=float)
        lib = table.effective_lib_size(rows)
        offset = np.log(lib)

        n, p = X.shape
        if n <= p:
            raise ValueError("No residual degrees of freedom to estimate dispersion.")

        Y = counts.to_numpy(dtype=float)
        expressed = Y.sum(axis=1) > 0
        if not expressed.any():
            raise ValueError("All genes have zero counts.")

        alpha = float(self.alpha_init)
        raw = np.zeros(int(expressed.sum()))
        iteration = 0
        for iteration in range(max(self.max_iter, 1)):
            raw = self._gene_moments(Y[expressed], X, offset, alpha)
            alpha_new = float(np.clip(np.median(raw), 1e-4, 10.0))
            # stabilize updates
            alpha_new = 0.5 * alpha + 0.5 * alpha_new
            done = abs(alpha_new - alpha) / (alpha + 1e-9) < 0.05
            alpha = alpha_new
            if done:
                break
        logger.debug(f"common dispersion {alpha:.4g} after {iteration + 1} iterations")

        df = n - p
        tagwise = np.full(Y.shape[0], alpha)
        tagwise[expressed] = (df * raw + self.prior_df * alpha) / (df + self.prior_df)
        tagwise = np.clip(tagwise, 1e-4, 10.0)

        ave_log_cpm = cpm(counts, lib_size=lib, log=True, prior_count=2.0).mean(axis=1).to_numpy()

        return DispersionModel(
            counts=counts,
            design=design.matrix,
            offset=offset,
            common_dispersion=alpha,
            tagwise_dispersion=tagwise,
            ave_log_cpm=ave_log_cpm,
        )

    def _fit(self, dispersion_model: DispersionModel, dispersion: np.ndarray) -> GLMFit:
        X = dispersion_model.design.to_numpy(dtype=float)
        params, deviance, _ = fit_genes(
            dispersion_model.counts.to_numpy(dtype=float), X, dispersion_model.offset, dispersion,
        )
        return GLMFit(
            framework=self.framework,
            coefficients=pd.DataFrame(params, index=dispersion_model.genes,
                                      columns=dispersion_model.design.columns),
            deviance=deviance,
            df_residual=dispersion_model.df_residual,
            dispersion=dispersion,
            dispersion_model=dispersion_model,
        )

    @abstractmethod
    def _statistic(self, fit: GLMFit, lr: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Return (statistic, p-value) for likelihood ratio statistics ``lr``."""

    def test_contrast(self, fit: GLMFit, contrast: np.ndarray) -> pd.DataFrame:
        """Test ``contrast`` by comparing the full fit with a reduced fit.

        The design is rotated so that the contrast becomes a single
        coefficient, which is then dropped to form the null model.

        Returns
        -------
        pd.DataFrame
            Indexed by gene, in fit order, with columns ``logFC``,
            ``logCPM``, the test statistic, ``PValue`` and ``FDR``.
        """
        c = np.asarray(contrast, dtype=float).ravel()
        X = fit.design.to_numpy(dtype=float)
        if c.shape != (X.shape[1],):
            raise ValueError(f"Contrast has {c.size} entries for {X.shape[1]} coefficients.")

        q, _ = np.linalg.qr(c.reshape(-1, 1), mode="complete")
        X0 = (X @ q)[:, 1:]

        dm = fit.dispersion_model
        Y = dm.counts.to_numpy(dtype=float)
        _, deviance0, _ = fit_genes(Y, X0, dm.offset, fit.dispersion)
        lr = np.clip(deviance0 - fit.deviance, 0.0, None)

        stat, pvalue = self._statistic(fit, lr)
        logfc = fit.coefficients.to_numpy(dtype=float) @ c / np.log(2.0)

        return pd.DataFrame({
            "logFC": logfc,
            "logCPM": dm.ave_log_cpm,
            self.statistic: stat,
            "PValue": pvalue,
            "FDR": bh_fdr(pvalue),
        }, index=dm.genes)

    def predicted_fold_change(
            self,
            dispersion_model: DispersionModel,
            design: EISADesign,
            prior_count: float,
    ) -> pd.DataFrame:
        """Log2 coefficients of a fit to counts augmented with a prior count.

        The prior count is scaled by each column's effective library size
        relative to the mean, and the offsets are enlarged by twice that
        amount, so low counts yield fold changes shrunk towards zero.
        """
        X = design.matrix.loc[dispersion_model.design.index].to_numpy(dtype=float)
        lib = np.exp(dispersion_model.offset)
        prior = prior_count * lib / lib.mean()
        Y = dispersion_model.counts.to_numpy(dtype=float) + prior
        offset = np.log(lib + 2.0 * prior)

        params, _, _ = fit_genes(Y, X, offset, dispersion_model.tagwise_dispersion)
        return pd.DataFrame(params / np.log(2.0), index=dispersion_model.genes,
                            columns=design.matrix.columns)


class LRTFitter(NBGLMFitter):
    """Likelihood ratio tests with gene-wise dispersions."""

    framework = "LRT"
    statistic = "LR"

    def fit_glm(self, dispersion_model: DispersionModel, design: EISADesign) -> GLMFit:
        return self._fit(dispersion_model, dispersion_model.tagwise_dispersion)

    def _statistic(self, fit: GLMFit, lr: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        return lr, sps.chi2.sf(lr, df=1)


class QLFitter(NBGLMFitter):
    """Quasi-likelihood F-tests with moderated quasi-dispersions."""

    framework = "QLF"
    statistic = "F"

    def fit_glm(self, dispersion_model: DispersionModel, design: EISADesign) -> GLMFit:
        n_genes = dispersion_model.counts.shape[0]
        fit = self._fit(dispersion_model, np.full(n_genes, dispersion_model.common_dispersion))

        df = fit.df_residual
        s2 = fit.deviance / df
        expressed = dispersion_model.counts.to_numpy().sum(axis=1) > 0
        d0, s0_sq = fit_f_dist(s2[expressed], df)
        s2_post, df_total = squeeze_var(s2, df, d0, s0_sq)
        logger.debug(f"quasi-dispersion prior: d0={d0:.3g}, s0^2={s0_sq:.3g}")

        fit.ql_dispersion = s2_post
        fit.df_total = df_total
        return fit

    def _statistic(self, fit: GLMFit, lr: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        with np.errstate(divide="ignore", invalid="ignore"):
            f = lr / fit.ql_dispersion
        if np.isinf(fit.df_total):
            return f, sps.chi2.sf(f, df=1)
        return f, sps.f.sf(f, 1, fit.df_total)


_FITTERS = {"QLF": QLFitter, "LRT": LRTFitter}


def get_fitter(framework: str, **kwargs) -> StatisticalFitter:
    """Return a fitter instance for ``framework`` (``"QLF"`` or ``"LRT"``)."""
    try:
        return _FITTERS[framework](**kwargs)
    except KeyError:
        raise InvalidPolicyError(
            f"Unknown statistical framework {framework!r}; must be one of {list(_FITTERS)}."
        ) from None
