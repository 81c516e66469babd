"""
Shared fixtures: simulated exonic and intronic RNA-seq counts.

Counts are negative binomial with a known intronic (transcriptional) log2
fold change for every gene and an additional exonic-only
(post-transcriptional) change for a subset of genes.
"""

import numpy as np
import pandas as pd
import pytest


def simulate_eisa_counts(
    n_genes: int = 120,
    n_per_group: int = 2,
    n_post: int = 20,
    dispersion: float = 0.05,
    seed: int = 7,
):
    """Simulate exonic/intronic counts for two conditions.

    Returns
    -------
    dict
        ``ex``, ``in`` (genes x samples DataFrames), ``cond`` (list of
        labels, ``A`` before ``B``), ``din`` (true intronic log2 fold
        change) and ``post`` (true exon-intron log2 difference).
    """
    rng = np.random.default_rng(seed)
    n = 2 * n_per_group
    genes = [f"gene{i:03d}" for i in range(1, n_genes + 1)]
    samples = [f"S{i}" for i in range(1, n + 1)]
    cond = ["A"] * n_per_group + ["B"] * n_per_group
    in_b = np.array([c == "B" for c in cond], dtype=float)

    base_ex = np.exp(rng.uniform(np.log(150), np.log(4000), n_genes))
    frac = rng.uniform(0.1, 0.4, n_genes)
    din = rng.normal(0.0, 1.0, n_genes)
    post = np.zeros(n_genes)
    post[:n_post] = rng.choice([-1.5, 1.5], size=n_post)

    depth = rng.uniform(0.8, 1.25, n)
    mu_ex = base_ex[:, None] * depth[None, :] * 2.0 ** (np.outer(din + post, in_b))
    mu_in = (base_ex * frac)[:, None] * depth[None, :] * 2.0 ** (np.outer(din, in_b))

    size = 1.0 / dispersion

    def draw(mu):
        return rng.negative_binomial(size, size / (size + mu))

    ex = pd.DataFrame(draw(mu_ex), index=genes, columns=samples)
    intr = pd.DataFrame(draw(mu_in), index=genes, columns=samples)
    return {
        "ex": ex,
        "in": intr,
        "cond": cond,
        "din": pd.Series(din, index=genes),
        "post": pd.Series(post, index=genes),
    }


@pytest.fixture(scope="session")
def sim():
    """Two replicates per condition, 120 genes."""
    return simulate_eisa_counts()


@pytest.fixture
def tiny_counts():
    """Four genes, four samples, hand-picked values."""
    ex = pd.DataFrame(
        [[100, 120, 200, 220],
         [50, 40, 60, 70],
         [300, 310, 150, 160],
         [10, 0, 20, 30]],
        index=["g1", "g2", "g3", "g4"],
        columns=["S1", "S2", "S3", "S4"],
    )
    intr = pd.DataFrame(
        [[20, 25, 40, 45],
         [10, 8, 12, 14],
         [60, 65, 30, 35],
         [2, 1, 4, 6]],
        index=ex.index,
        columns=ex.columns,
    )
    return ex, intr, ["A", "A", "B", "B"]
