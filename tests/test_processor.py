"""Tests for sequence table construction and bimera detection."""

import logging
import warnings

import pandas as pd
import pytest

from ChimRem import processor
from ChimRem.processor import (
    align_to_parent,
    is_bimera,
    is_bimera_denovo,
    is_bimera_denovo_table,
    make_sequence_table,
    remove_bimera_denovo,
)

from tests.conftest import SHARED_SITE, substitute


class TestAlignToParent:
    """Tests for align_to_parent() function."""

    def test_identical_sequences_align_without_gaps(self, parents):
        """Test that a sequence aligned to itself has no gaps."""
        query_g, parent_g = align_to_parent(parents[0], parents[0])

        assert query_g == parents[0]
        assert parent_g == parents[0]

    def test_gapped_strings_have_equal_length(self, parents, bimera):
        """Test that both gapped strings span the same alignment columns."""
        query_g, parent_g = align_to_parent(bimera, parents[1])

        assert len(query_g) == len(parent_g)
        assert query_g.replace("-", "") == bimera
        assert parent_g.replace("-", "") == parents[1]

    def test_shorter_query_is_placed_without_penalty(self, parents):
        """Test that a prefix of the parent aligns flush with end gaps only."""
        prefix = parents[0][:50]
        query_g, parent_g = align_to_parent(prefix, parents[0])

        assert query_g == prefix + "-" * (len(parents[0]) - len(prefix))
        assert parent_g == parents[0]

    def test_aligner_uses_no_deprecated_settings(self, monkeypatch, parents):
        """Test that building the aligner and aligning raise no deprecation warnings."""
        monkeypatch.setattr(processor, "_ALIGNER", None)

        with warnings.catch_warnings():
            warnings.simplefilter("error")
            query_g, _ = align_to_parent(parents[0][:50], parents[0])

        assert query_g.startswith(parents[0][:50])


class TestIsBimera:
    """Tests for is_bimera() function."""

    def test_exact_bimera_is_detected(self, parents, bimera):
        assert is_bimera(bimera, parents)

    def test_needs_both_parents(self, parents, bimera):
        """Test that a single parent cannot explain a bimera."""
        assert not is_bimera(bimera, [parents[0]])
        assert not is_bimera(bimera, [parents[1]])

    def test_parent_itself_is_not_a_bimera(self, parents, unrelated):
        """Test that a sequence fully covered by a parent is ignored."""
        assert not is_bimera(parents[0], [parents[0], unrelated[0]])

    def test_one_off_bimera_requires_allow_one_off(self, parents, bimera):
        """Test that one mismatch on a site both parents share is only tolerated with allow_one_off."""
        one_off = substitute(bimera, SHARED_SITE)

        assert not is_bimera(one_off, parents, allow_one_off=False)
        assert is_bimera(one_off, parents, allow_one_off=True)

    def test_close_parents_do_not_contribute_one_off_overlaps(self, parents, unrelated):
        """Test that a single-mismatch variant of a parent is not a one-off bimera."""
        variant = substitute(parents[0], 30)

        assert not is_bimera(variant, [parents[0], unrelated[0]], allow_one_off=True)


class TestIsBimeraDenovo:
    """Tests for is_bimera_denovo() function."""

    def test_default_thresholds_flag_bimera(self, parents, bimera):
        uniques = {parents[0]: 100, parents[1]: 80, bimera: 10}

        flags = is_bimera_denovo(uniques)

        assert list(flags.index) == [parents[0], parents[1], bimera]
        assert list(flags) == [False, False, True]

    def test_overabundance_multiplier_changes_flags(self, parents, bimera):
        """Test that raising the overabundance multiplier removes the candidate parents."""
        uniques = {parents[0]: 100, parents[1]: 80, bimera: 10}

        flags = is_bimera_denovo(uniques, min_fold_parent_over_abundance=10)

        assert not flags.any()

    def test_minimum_parent_abundance_changes_flags(self, parents, bimera):
        """Test that a high minimum parent abundance leaves a single parent."""
        uniques = {parents[0]: 100, parents[1]: 80, bimera: 10}

        assert is_bimera_denovo(uniques, min_parent_abundance=80)[bimera]
        assert not is_bimera_denovo(uniques, min_parent_abundance=90)[bimera]

    def test_relaxed_thresholds_flag_low_abundance_parents(self, parents, bimera):
        """Test that parents below the default thresholds count once relaxed."""
        uniques = {parents[0]: 6, parents[1]: 6, bimera: 4}

        assert not is_bimera_denovo(uniques)[bimera]
        assert is_bimera_denovo(uniques, min_fold_parent_over_abundance=1, min_parent_abundance=1)[bimera]

    def test_multiple_workers_give_same_flags(self, parents, bimera, unrelated):
        uniques = {parents[0]: 100, parents[1]: 80, unrelated[0]: 40, bimera: 10}

        serial = is_bimera_denovo(uniques, threads=1)
        parallel = is_bimera_denovo(uniques, threads=2)

        pd.testing.assert_series_equal(serial, parallel)

    def test_empty_input(self):
        assert is_bimera_denovo({}).empty


class TestMakeSequenceTable:
    """Tests for make_sequence_table() function."""

    def test_columns_ordered_by_total_abundance(self, scenario_samples, unrelated):
        s1, s2, s3 = unrelated

        seqtab = make_sequence_table(scenario_samples)

        assert list(seqtab.index) == ["A.fastq", "B.fastq"]
        assert list(seqtab.columns) == [s1, s3, s2]
        assert seqtab.loc["A.fastq"].tolist() == [100, 0, 5]
        assert seqtab.loc["B.fastq"].tolist() == [0, 50, 0]

    def test_abundances_are_merged_across_samples(self, unrelated):
        s1, s2, _ = unrelated
        seqtab = make_sequence_table({"A": {s1: 3, s2: 10}, "B": {s1: 20}})

        assert list(seqtab.columns) == [s1, s2]
        assert seqtab.sum(axis=0).tolist() == [23, 10]

    def test_ties_keep_first_appearance(self, unrelated):
        s1, s2, s3 = unrelated
        seqtab = make_sequence_table({"A": {s2: 5, s1: 5}, "B": {s3: 5}})

        assert list(seqtab.columns) == [s2, s1, s3]

    def test_sample_without_reads_keeps_its_row(self, unrelated):
        seqtab = make_sequence_table({"A": {unrelated[0]: 5}, "Empty": {}})

        assert list(seqtab.index) == ["A", "Empty"]
        assert seqtab.loc["Empty"].sum() == 0

    def test_mixed_lengths_warn(self, caplog, unrelated):
        """Test that varying sequence lengths are reported without --verbose."""
        with caplog.at_level(logging.WARNING):
            make_sequence_table({"A": {unrelated[0]: 5, unrelated[1][:150]: 3}})

        warnings_logged = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert any("vary in length (150-200 bp)" in r.getMessage() for r in warnings_logged)

    def test_equal_lengths_do_not_warn(self, caplog, unrelated):
        with caplog.at_level(logging.WARNING):
            make_sequence_table({"A": {unrelated[0]: 5, unrelated[1]: 3}})

        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


class TestRemoveBimeraDenovo:
    """Tests for remove_bimera_denovo() function."""

    @pytest.fixture
    def seqtab(self, parents, bimera):
        return make_sequence_table({
            "S1.fastq": {parents[0]: 100, parents[1]: 80, bimera: 10},
            "S2.fastq": {parents[0]: 60, parents[1]: 90, bimera: 12},
            "S3.fastq": {bimera: 10},
        })

    def test_pooled_removes_bimera_column(self, seqtab, parents, bimera):
        nochim = remove_bimera_denovo(seqtab, method="pooled")

        assert list(nochim.columns) == list(seqtab.columns[:2])
        assert bimera not in nochim.columns
        assert list(nochim.index) == list(seqtab.index)

    def test_pooled_keeps_bimera_with_strict_thresholds(self, seqtab):
        nochim = remove_bimera_denovo(seqtab, method="pooled", min_fold_parent_over_abundance=20)

        pd.testing.assert_frame_equal(nochim, seqtab)

    def test_per_sample_zeroes_only_flagged_samples(self, seqtab, bimera):
        """Test that S3 has no parents, so its bimera reads survive."""
        nochim = remove_bimera_denovo(seqtab, method="per-sample")

        assert bimera in nochim.columns
        assert nochim[bimera].tolist() == [0, 0, 10]

    def test_consensus_flags_sequence_flagged_in_most_samples(self, seqtab, bimera):
        """Test that two of three samples flagging it, with one negative ignored, removes the bimera."""
        nochim = remove_bimera_denovo(seqtab, method="consensus")

        assert bimera not in nochim.columns

    def test_consensus_table_respects_negatives(self, parents, bimera):
        """Test that a bimera flagged in one of three samples is kept."""
        seqtab = make_sequence_table({
            "S1.fastq": {parents[0]: 100, parents[1]: 80, bimera: 10},
            "S2.fastq": {bimera: 10},
            "S3.fastq": {bimera: 10},
        })

        flags = is_bimera_denovo_table(seqtab)

        assert not flags[bimera]

    def test_filtering_never_adds_reads(self, seqtab):
        for method in ("pooled", "consensus", "per-sample"):
            nochim = remove_bimera_denovo(seqtab, method=method)
            assert (nochim.sum(axis=1) <= seqtab.sum(axis=1)).all()

    def test_unknown_method_raises(self, seqtab):
        with pytest.raises(ValueError, match="Unknown bimera method"):
            remove_bimera_denovo(seqtab, method="sideways")
