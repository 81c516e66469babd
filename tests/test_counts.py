"""Tests for input validation and the combined count table."""

import types

import numpy as np
import pandas as pd
import pytest

from eisa.counts import (
    CountTable,
    combine_counts,
    fraction_intronic,
    prepare_condition,
    prepare_counts,
    split_assays,
)
from eisa.errors import (
    ConditionCardinalityError,
    EISAError,
    IdentifierMismatchError,
    ShapeError,
)


class TestPrepareCounts:

    def test_dataframes_pass_through(self, tiny_counts):
        ex, intr, _ = tiny_counts
        out_ex, out_in = prepare_counts(ex, intr)
        assert list(out_ex.index) == ["g1", "g2", "g3", "g4"]
        assert list(out_in.columns) == ["S1", "S2", "S3", "S4"]
        assert out_ex.dtypes.eq(float).all()
        # inputs are not modified
        assert ex.dtypes.eq(np.int64).all()

    def test_labels_are_synthesized(self):
        ex, intr = prepare_counts(np.array([[1, 2], [3, 4]]), np.array([[0, 1], [1, 0]]))
        assert list(ex.index) == ["1", "2"]
        assert list(intr.columns) == ["1", "2"]

    def test_dimension_mismatch(self):
        with pytest.raises(ShapeError, match="dimensions"):
            prepare_counts(np.ones((3, 2)), np.ones((3, 3)))

    def test_non_matrix_intronic_counts(self):
        with pytest.raises(ShapeError):
            prepare_counts(np.array([[1, 2], [3, 4]]), "b")

    def test_missing_intronic_counts(self):
        with pytest.raises(ShapeError):
            prepare_counts(np.ones((3, 2)))

    def test_non_numeric(self):
        with pytest.raises(ShapeError, match="non-numeric"):
            prepare_counts(pd.DataFrame({"x": ["a", "b"]}), pd.DataFrame({"x": [1, 2]}))

    def test_negative_and_missing_counts(self):
        good = np.ones((2, 2))
        with pytest.raises(ShapeError, match="negative"):
            prepare_counts(good, -good)
        with pytest.raises(ShapeError, match="missing"):
            prepare_counts(np.array([[1.0, np.nan], [1.0, 1.0]]), good)

    def test_gene_identifier_mismatch(self, tiny_counts):
        ex, intr, _ = tiny_counts
        intr = intr.rename(index={"g4": "g5"})
        with pytest.raises(IdentifierMismatchError, match="Gene"):
            prepare_counts(ex, intr)

    def test_sample_identifier_mismatch(self, tiny_counts):
        ex, intr, _ = tiny_counts
        intr = intr[["S2", "S1", "S3", "S4"]]
        with pytest.raises(IdentifierMismatchError, match="Sample"):
            prepare_counts(ex, intr)

    def test_duplicated_identifiers(self, tiny_counts):
        ex, intr, _ = tiny_counts
        ex = ex.rename(index={"g2": "g1"})
        intr = intr.rename(index={"g2": "g1"})
        with pytest.raises(IdentifierMismatchError):
            prepare_counts(ex, intr)

    def test_errors_share_base_class(self):
        with pytest.raises(EISAError):
            prepare_counts(np.ones((3, 2)), np.ones((2, 2)))


class TestSplitAssays:

    def test_mapping_exon_intron(self, tiny_counts):
        ex, intr, _ = tiny_counts
        out_ex, out_in = prepare_counts({"exon": ex, "intron": intr})
        pd.testing.assert_frame_equal(out_ex, ex.astype(float))
        pd.testing.assert_frame_equal(out_in, intr.astype(float))

    def test_spliced_unspliced_layers(self, tiny_counts):
        ex, intr, _ = tiny_counts
        obj = types.SimpleNamespace(layers={"spliced": ex, "unspliced": intr})
        a, b = split_assays(obj)
        assert a is ex
        assert b is intr

    def test_combined_input_ignores_second_argument(self, tiny_counts):
        ex, intr, _ = tiny_counts
        out_ex, out_in = prepare_counts({"exon": ex, "intron": intr}, "ignored")
        assert out_in.equals(intr.astype(float))

    def test_missing_assays(self, tiny_counts):
        ex, _, _ = tiny_counts
        with pytest.raises(ShapeError, match="assays"):
            split_assays({"counts": ex})

    def test_unsupported_object(self):
        with pytest.raises(ShapeError):
            split_assays(42)


class TestPrepareCondition:

    def test_order_of_first_appearance(self):
        cat = prepare_condition(["TN", "TN", "ES", "ES"], 4)
        assert list(cat.categories) == ["TN", "ES"]

    def test_categorical_keeps_level_order(self):
        cond = pd.Categorical(["b", "a", "b", "a"], categories=["b", "a", "c"])
        cat = prepare_condition(cond, 4)
        assert list(cat.categories) == ["b", "a"]

    def test_categorical_series(self):
        cond = pd.Series(["x", "y", "y"], dtype=pd.CategoricalDtype(["y", "x"]))
        assert list(prepare_condition(cond, 3).categories) == ["y", "x"]

    def test_numeric_labels_become_strings(self):
        cat = prepare_condition([2, 2, 1, 1], 4)
        assert list(cat.categories) == ["2", "1"]

    def test_wrong_length(self):
        with pytest.raises(ConditionCardinalityError, match="4 samples"):
            prepare_condition(["a", "b"], 4)

    @pytest.mark.parametrize("cond", [["a", "a", "a"], ["a", "b", "c"]])
    def test_not_two_levels(self, cond):
        with pytest.raises(ConditionCardinalityError, match="two levels"):
            prepare_condition(cond, 3)

    def test_missing(self):
        with pytest.raises(ConditionCardinalityError):
            prepare_condition(None, 2)
        with pytest.raises(ConditionCardinalityError):
            prepare_condition(pd.Categorical(["a", None, "b"]), 3)


class TestCountTable:

    @pytest.fixture
    def table(self, tiny_counts):
        ex, intr, cond = tiny_counts
        ex, intr = prepare_counts(ex, intr)
        return combine_counts(ex, intr, prepare_condition(cond, 4))

    def test_columns_are_tagged(self, table):
        assert isinstance(table, CountTable)
        assert list(table.counts.columns) == [
            "Ex.S1", "Ex.S2", "Ex.S3", "Ex.S4", "In.S1", "In.S2", "In.S3", "In.S4",
        ]
        assert list(table.samples.index) == list(table.counts.columns)
        assert list(table.samples["region"]) == ["exon"] * 4 + ["intron"] * 4
        assert list(table.samples["sample"]) == ["S1", "S2", "S3", "S4"] * 2
        assert list(table.samples["sample_id"]) == ["s001", "s002", "s003", "s004"] * 2
        assert list(table.samples["condition"].astype(str)) == ["A", "A", "B", "B"] * 2

    def test_dimensions(self, table):
        assert table.n_genes == 4
        assert table.n_samples == 4
        assert list(table.condition.categories) == ["A", "B"]

    def test_columns_for(self, table):
        assert table.columns_for("intron", "B") == ["In.S3", "In.S4"]
        assert table.columns_for(level="A") == ["Ex.S1", "Ex.S2", "In.S1", "In.S2"]

    def test_region_counts(self, table, tiny_counts):
        _, intr, _ = tiny_counts
        pd.testing.assert_frame_equal(table.region_counts("intron"), intr.astype(float))

    def test_library_sizes(self, table, tiny_counts):
        ex, _, _ = tiny_counts
        assert np.allclose(table.effective_lib_size(["Ex.S1", "Ex.S2"]), ex.sum(axis=0)[:2])

    def test_subset_genes(self, table):
        sub = table.subset_genes(["g3", "g1"])
        assert list(sub.genes) == ["g3", "g1"]
        assert sub.samples is not table.samples
        assert table.n_genes == 4


class TestFractionIntronic:

    def test_formula(self, sim):
        frac = fraction_intronic(sim["ex"], sim["in"])
        ex_tot = sim["ex"].sum(axis=0)
        in_tot = sim["in"].sum(axis=0)
        assert frac.name == "frac_in"
        assert list(frac.index) == list(sim["ex"].columns)
        assert np.allclose(frac, in_tot / (ex_tot + in_tot))
        assert ((frac >= 0) & (frac <= 1)).all()
