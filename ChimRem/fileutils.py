import csv
import logging
from typing import Dict, List, Tuple

import pandas as pd
from Bio import SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

ASV_ID = "ASV_ID"
SEQ_COLUMN = "seq"
UNRESOLVED_SAMPLE = "NA"


def read_tracking_stats(
    samples: Dict[str, Dict[str, int]],
    nochim: pd.DataFrame
) -> pd.DataFrame:
    """
    Track reads through denoising and chimera removal for each sample.

    Parameters
    ----------
    samples : dict[str, dict[str, int]]
        Denoised data, file identifier -> {sequence: abundance}.
    nochim : pd.DataFrame
        Chimera-filtered sample x sequence table.

    Returns
    -------
    pd.DataFrame
        Columns `file`, `denoised` and `nonchim`, one row per sample in the
        order of `samples`.
    """
    nonchim = nochim.sum(axis=1)
    return pd.DataFrame({
        "file": list(samples),
        "denoised": [sum(uniques.values()) for uniques in samples.values()],
        "nonchim": [int(nonchim.get(file_id, 0)) for file_id in samples],
    })


def build_count_table(
    nochim: pd.DataFrame,
    file_to_sample: Dict[str, str]
) -> pd.DataFrame:
    """
    Turn the filtered table into an ASV x sample count table.

    Columns are relabeled from file identifiers to sample ids through
    `file_to_sample`; files missing from the mapping get the label "NA".
    Rows get sequential ids ASV_1..ASV_n in the filtered table's column order.

    Returns
    -------
    pd.DataFrame
        One column per sample, indexed by (`ASV_ID`, `seq`). Keeping both in
        the index leaves every sample id free to be used as a column name.
    """
    counts = nochim.T
    unresolved = [f for f in counts.columns if f not in file_to_sample]
    if unresolved:
        logging.warning(
            f"{len(unresolved)} file(s) not found in the manifest, labelled "
            f"'{UNRESOLVED_SAMPLE}': {', '.join(map(str, unresolved))}"
        )
    sample_ids = [file_to_sample.get(f, UNRESOLVED_SAMPLE) for f in counts.columns]

    index = pd.MultiIndex.from_arrays(
        [[f"ASV_{i}" for i in range(1, len(counts) + 1)], list(counts.index)],
        names=[ASV_ID, SEQ_COLUMN],
    )
    return pd.DataFrame(counts.to_numpy(), index=index, columns=sample_ids)


def fasta_records(count_table: pd.DataFrame) -> List[Tuple[str, str]]:
    """(ASV id, sequence) pairs in ASV order."""
    return list(zip(
        count_table.index.get_level_values(ASV_ID),
        count_table.index.get_level_values(SEQ_COLUMN),
    ))


def relative_abundance(count_table: pd.DataFrame) -> pd.DataFrame:
    """
    Normalize each sample column of a count table to sum to 1.

    Samples with zero total counts get NaN for every ASV.

    Returns
    -------
    pd.DataFrame
        One column per sample, indexed by `ASV_ID`.
    """
    totals = count_table.sum(axis=0).to_numpy(dtype=float)
    totals[totals == 0] = float("nan")

    return pd.DataFrame(
        count_table.to_numpy(dtype=float) / totals,
        index=count_table.index.get_level_values(ASV_ID),
        columns=count_table.columns,
    )


def write_stats(stats: pd.DataFrame, path: str) -> None:
    stats.to_csv(path, sep="\t", index=False, quoting=csv.QUOTE_NONE)


def _write_commented_table(table: pd.DataFrame, path: str, comment: str) -> None:
    with open(path, "w") as handle:
        handle.write(f"# {comment}\n")
        table.to_csv(
            handle,
            sep="\t",
            index_label="#" + ASV_ID,
            header=[str(c) for c in table.columns],
            quoting=csv.QUOTE_NONE,
            na_rep="NaN",
        )


def write_count_table(count_table: pd.DataFrame, path: str) -> None:
    """Write the absolute count table; the sequence level is left out."""
    _write_commented_table(
        count_table.droplevel(SEQ_COLUMN),
        path,
        "Generated by script chimrem from dada2 objects",
    )


def write_relative_table(rel_table: pd.DataFrame, path: str) -> None:
    _write_commented_table(rel_table, path, "Generated by script chimrem")


def write_fasta(records: List[Tuple[str, str]], path: str) -> None:
    """Write (id, sequence) pairs as unwrapped FASTA."""
    SeqIO.write(
        (SeqRecord(Seq(sequence), id=asv_id, description="") for asv_id, sequence in records),
        path,
        "fasta-2line",
    )
