"""Tests for the selection of quantifiable genes."""

import logging

import numpy as np
import pandas as pd
import pytest

from eisa.counts import combine_counts, prepare_condition, prepare_counts
from eisa.design import build_design
from eisa.errors import InvalidPolicyError, PseudocountMismatchWarning
from eisa.filtering import filter_by_expr, select_genes
from eisa.normalization import activate_basis, compute_size_factors, published_log_values


def _prepared(sim, model_samples=True):
    ex, intr = prepare_counts(sim["ex"], sim["in"])
    table = combine_counts(ex, intr, prepare_condition(sim["cond"], ex.shape[1]))
    compute_size_factors(table)
    activate_basis(table, "individual")
    return table, build_design(table, model_samples=model_samples)


class TestFilterByExpr:

    def test_group_size(self):
        # median library size 1e6 gives a 10 CPM cutoff
        counts = pd.DataFrame(
            [[20, 20, 0, 0],
             [20, 0, 0, 0],
             [5, 5, 5, 5],
             [9, 9, 9, 9]],
        )
        lib = np.full(4, 1e6)
        keep = filter_by_expr(counts, group=["a", "a", "b", "b"], lib_size=lib)
        assert keep.tolist() == [True, False, False, False]

    def test_min_total_count(self):
        counts = pd.DataFrame([[10, 10, 0], [8, 7, 0]])
        keep = filter_by_expr(counts, group=["a", "a", "b"], lib_size=np.full(3, 1e6),
                              min_count=5, min_total_count=16)
        assert keep.tolist() == [True, False]

    def test_design_leverage(self):
        # two groups of two: leverage 1/2, so two samples must pass
        X = np.array([[1, 0], [1, 0], [1, 1], [1, 1]], dtype=float)
        counts = pd.DataFrame([[30, 0, 30, 0], [30, 30, 0, 0]])
        keep = filter_by_expr(counts, design=X, lib_size=np.full(4, 1e6))
        assert keep.tolist() == [True, True]
        # one sample in the second group: a single passing column is enough
        X_unbal = np.array([[1, 0], [1, 0], [1, 0], [1, 1]], dtype=float)
        keep = filter_by_expr(pd.DataFrame([[0, 0, 0, 30]]), design=X_unbal, lib_size=np.full(4, 1e6))
        assert keep.tolist() == [True]

    def test_large_groups(self):
        n = 20
        counts = pd.DataFrame([[100] * 15 + [0] * 5, [100] * 12 + [0] * 8])
        keep = filter_by_expr(counts, group=["a"] * n, lib_size=np.full(n, 1e6))
        # 10 + (20 - 10) * 0.7 = 17 samples required
        assert keep.tolist() == [False, False]
        counts.iloc[0, 15:17] = 100
        keep = filter_by_expr(counts, group=["a"] * n, lib_size=np.full(n, 1e6))
        assert keep.tolist() == [True, False]


class TestSelectGenes:

    def test_none_keeps_everything(self, sim, caplog):
        table, design = _prepared(sim)
        with caplog.at_level(logging.INFO, logger="eisa"):
            sel = select_genes(table, design, "none", 2.0)
        assert sel.n_kept == sel.n_total == table.n_genes
        assert list(sel.genes) == list(table.genes)
        assert "skip filtering" in caplog.text

    def test_filter_by_expr_both_halves(self, sim, caplog):
        table, design = _prepared(sim)
        with caplog.at_level(logging.INFO, logger="eisa"):
            sel = select_genes(table, design, "filterByExpr", 2.0)
        assert 0 < sel.n_kept <= table.n_genes
        assert f"keeping {sel.n_kept} from {table.n_genes}" in caplog.text

        ex_cols = table.columns_for("exon")
        in_cols = table.columns_for("intron")
        keep_in = filter_by_expr(table.counts.loc[:, in_cols],
                                 design=design.rows(in_cols).to_numpy(),
                                 lib_size=table.effective_lib_size(in_cols))
        keep_ex = filter_by_expr(table.counts.loc[:, ex_cols],
                                 design=design.rows(ex_cols).to_numpy(),
                                 lib_size=table.effective_lib_size(ex_cols))
        assert list(sel.genes) == list(table.genes[keep_ex & keep_in])

    def test_published_criterion(self, sim):
        table, design = _prepared(sim, model_samples=False)
        sel = select_genes(table, design, "published", 8.0)
        nl_ex = published_log_values(sim["ex"].astype(float), 8.0)
        nl_in = published_log_values(sim["in"].astype(float), 8.0)
        expected = nl_ex.index[(nl_ex.mean(axis=1) > 5) & (nl_in.mean(axis=1) > 5)]
        assert list(sel.genes) == list(expected)
        pd.testing.assert_frame_equal(sel.scaled_log_in, nl_in)

    def test_published_is_deterministic(self, sim):
        table, design = _prepared(sim)
        first = select_genes(table, design, "published", 8.0)
        second = select_genes(table, design, "published", 8.0)
        assert first.genes.equals(second.genes)

    def test_pseudocount_mismatch_warns(self, sim):
        table, design = _prepared(sim)
        with pytest.warns(PseudocountMismatchWarning):
            select_genes(table, design, "published", 2.0)

    def test_log_cpm_cover_all_genes(self, sim):
        table, design = _prepared(sim)
        sel = select_genes(table, design, "filterByExpr", 2.0)
        assert sel.log_cpm_ex.shape == (table.n_genes, table.n_samples)
        assert list(sel.log_cpm_in.columns) == table.columns_for("intron")
        assert list(sel.scaled_log_ex.columns) == list(sim["ex"].columns)

    def test_unknown_strategy(self, sim):
        table, design = _prepared(sim)
        with pytest.raises(InvalidPolicyError):
            select_genes(table, design, "edgeR", 2.0)
