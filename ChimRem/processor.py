import logging
import concurrent.futures
from typing import Dict, List, Sequence, Tuple

import numpy as np
import pandas as pd
from Bio.Align import PairwiseAligner

# Ends-free global alignment scores used for bimera checks
MATCH_SCORE = 5
MISMATCH_SCORE = -4
GAP_SCORE = -8
MIN_ONE_OFF_PARENT_DISTANCE = 4

_ALIGNER = None


def _init_worker_logging(level=logging.INFO):
    """
    Initialize logging configuration for worker processes.
    This is necessary to ensure logging works properly in child processes,
    especially on platforms that use 'spawn' instead of 'fork'.
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def _get_aligner() -> PairwiseAligner:
    """Return the per-process aligner, creating it on first use."""
    global _ALIGNER
    if _ALIGNER is None:
        aligner = PairwiseAligner()
        aligner.mode = "global"
        aligner.match_score = MATCH_SCORE
        aligner.mismatch_score = MISMATCH_SCORE
        aligner.open_gap_score = GAP_SCORE
        aligner.extend_gap_score = GAP_SCORE
        # Overhangs at either end are free
        aligner.end_gap_score = 0.0
        _ALIGNER = aligner
    return _ALIGNER


def align_to_parent(sequence: str, parent: str) -> Tuple[str, str]:
    """
    Align a query sequence to a candidate parent.

    Parameters
    ----------
    sequence : str
        The query sequence.
    parent : str
        The candidate parent sequence.

    Returns
    -------
    tuple(str, str)
        Gapped query and gapped parent, of equal length.
    """
    alignment = _get_aligner().align(parent, sequence)[0]
    coords = alignment.coordinates
    parent_pos, query_pos = coords[0], coords[1]

    query_g = []
    parent_g = []
    for i in range(parent_pos.size - 1):
        p0, p1 = int(parent_pos[i]), int(parent_pos[i + 1])
        q0, q1 = int(query_pos[i]), int(query_pos[i + 1])
        dp = p1 - p0
        dq = q1 - q0
        if dp > 0 and dq > 0:
            parent_g.append(parent[p0:p1])
            query_g.append(sequence[q0:q1])
        elif dp > 0:
            parent_g.append(parent[p0:p1])
            query_g.append("-" * dp)
        elif dq > 0:
            parent_g.append("-" * dq)
            query_g.append(sequence[q0:q1])

    return "".join(query_g), "".join(parent_g)


def _scan_overlap(query_g: str, parent_g: str) -> Tuple[int, int]:
    """
    Count query bases matching the parent from the start of the alignment.

    Returns the exact overlap (up to the first mismatch or indel) and the
    one-off overlap (stepping over that first difference, up to the second).
    """
    pos = 0
    n = len(query_g)
    while pos < n and query_g[pos] == "-":
        pos += 1

    exact = 0
    while pos < n and query_g[pos] == parent_g[pos]:
        exact += 1
        pos += 1

    one_off = exact
    if pos < n:
        if query_g[pos] != "-":
            one_off += 1
        pos += 1
        while pos < n and query_g[pos] == parent_g[pos]:
            one_off += 1
            pos += 1

    return exact, one_off


def _count_differences(query_g: str, parent_g: str) -> int:
    """Mismatches and indels between two aligned sequences, ignoring end gaps."""
    covered = [i for i in range(len(query_g)) if query_g[i] != "-" and parent_g[i] != "-"]
    if not covered:
        return len(query_g)
    start, end = covered[0], covered[-1]
    return sum(1 for i in range(start, end + 1) if query_g[i] != parent_g[i])


def is_bimera(
    sequence: str,
    parents: Sequence[str],
    allow_one_off: bool = False,
    min_one_off_parent_distance: int = MIN_ONE_OFF_PARENT_DISTANCE,
) -> bool:
    """
    Decide whether a sequence is an exact bimera of two of the given parents.

    The sequence is aligned against each candidate parent and the longest
    exactly matching prefix (left) and suffix (right) are recorded. It is a
    bimera when one parent's left overlap and another's right overlap together
    span the whole sequence. Parents that match the full length are skipped.

    Parameters
    ----------
    sequence : str
        The sequence to test.
    parents : sequence of str
        Candidate parent sequences.
    allow_one_off : bool, optional
        Also accept a bimera with a single mismatch or indel. Only parents with
        at least `min_one_off_parent_distance` differences to the sequence
        contribute one-off overlaps.
    min_one_off_parent_distance : int, optional
        See `allow_one_off` (default: 4).

    Returns
    -------
    bool
    """
    n = len(sequence)
    max_left = max_right = 0
    oo_max_left = oo_max_right = 0

    for parent in parents:
        query_g, parent_g = align_to_parent(sequence, parent)
        left, left_oo = _scan_overlap(query_g, parent_g)
        right, right_oo = _scan_overlap(query_g[::-1], parent_g[::-1])

        if left + right >= n:
            # Parent covers the whole sequence
            continue

        max_left = max(max_left, left)
        max_right = max(max_right, right)
        if allow_one_off and _count_differences(query_g, parent_g) >= min_one_off_parent_distance:
            oo_max_left = max(oo_max_left, left_oo)
            oo_max_right = max(oo_max_right, right_oo)

        if max_left + max_right >= n:
            return True
        if allow_one_off and (oo_max_left + max_right >= n or max_left + oo_max_right >= n):
            return True

    return False


def _check_task(task: tuple) -> bool:
    sequence, parents, allow_one_off, min_one_off_parent_distance = task
    if len(parents) < 2:
        return False
    return is_bimera(sequence, parents, allow_one_off, min_one_off_parent_distance)


def _flag_samples(
    abundances: List[pd.Series],
    min_fold_parent_over_abundance: float,
    min_parent_abundance: int,
    allow_one_off: bool,
    min_one_off_parent_distance: int,
    threads: int,
) -> List[pd.Series]:
    """
    Run bimera checks for several sequence -> abundance series in one pool.

    Returns one boolean series per input, indexed like the input.
    """
    tasks = []
    for abund in abundances:
        ordered = abund.iloc[np.argsort(-abund.to_numpy(), kind="stable")]
        for sequence, abundance in abund.items():
            is_parent = (ordered > min_fold_parent_over_abundance * abundance) & (ordered >= min_parent_abundance)
            tasks.append((sequence, tuple(ordered.index[is_parent.to_numpy()]), allow_one_off, min_one_off_parent_distance))

    if threads > 1 and len(tasks) > 1:
        logging.info(f"Checking {len(tasks)} sequences for bimeras using {threads} workers.")
        chunksize = max(1, len(tasks) // (threads * 4))
        with concurrent.futures.ProcessPoolExecutor(
            max_workers=threads,
            initializer=_init_worker_logging,
            initargs=(logging.getLogger().level,),
        ) as executor:
            results = list(executor.map(_check_task, tasks, chunksize=chunksize))
    else:
        results = [_check_task(task) for task in tasks]

    flags = []
    offset = 0
    for abund in abundances:
        flags.append(pd.Series(results[offset:offset + len(abund)], index=abund.index, dtype=bool))
        offset += len(abund)
    return flags


def is_bimera_denovo(
    uniques,
    min_fold_parent_over_abundance: float = 2,
    min_parent_abundance: int = 8,
    allow_one_off: bool = False,
    min_one_off_parent_distance: int = MIN_ONE_OFF_PARENT_DISTANCE,
    threads: int = 1,
) -> pd.Series:
    """
    Flag bimeras among a set of unique sequences using their own abundances.

    A sequence with abundance `a` may only be explained by parents whose
    abundance is greater than `min_fold_parent_over_abundance * a` and at least
    `min_parent_abundance`.

    Parameters
    ----------
    uniques : dict or pd.Series
        Sequence -> abundance.
    min_fold_parent_over_abundance : float, optional
        Parent overabundance multiplier (default: 2).
    min_parent_abundance : int, optional
        Minimum parent abundance (default: 8).
    allow_one_off : bool, optional
        Also flag sequences one mismatch or indel from an exact bimera.
    min_one_off_parent_distance : int, optional
        Minimum differences for a parent to contribute one-off overlaps.
    threads : int, optional
        Number of worker processes (default: 1).

    Returns
    -------
    pd.Series
        Boolean flags indexed by sequence, in input order.
    """
    abund = pd.Series(uniques, dtype="int64")
    return _flag_samples(
        [abund],
        min_fold_parent_over_abundance,
        min_parent_abundance,
        allow_one_off,
        min_one_off_parent_distance,
        threads,
    )[0]


def _flag_matrix(
    seqtab: pd.DataFrame,
    min_fold_parent_over_abundance: float,
    min_parent_abundance: int,
    allow_one_off: bool,
    min_one_off_parent_distance: int,
    threads: int,
) -> pd.DataFrame:
    """Per-sample bimera flags, False where a sequence is absent from a sample."""
    present = [seqtab.loc[sample][seqtab.loc[sample] > 0] for sample in seqtab.index]
    sample_flags = _flag_samples(
        present,
        min_fold_parent_over_abundance,
        min_parent_abundance,
        allow_one_off,
        min_one_off_parent_distance,
        threads,
    )
    flags = pd.DataFrame(False, index=seqtab.index, columns=seqtab.columns)
    for sample, sflags in zip(seqtab.index, sample_flags):
        if len(sflags):
            flags.loc[sample, sflags.index] = sflags.to_numpy()
    return flags


def is_bimera_denovo_table(
    seqtab: pd.DataFrame,
    min_sample_fraction: float = 0.9,
    ignore_n_negatives: int = 1,
    min_fold_parent_over_abundance: float = 2,
    min_parent_abundance: int = 8,
    allow_one_off: bool = False,
    min_one_off_parent_distance: int = MIN_ONE_OFF_PARENT_DISTANCE,
    threads: int = 1,
) -> pd.Series:
    """
    Flag bimeras by checking every sample independently and taking a consensus.

    A sequence is a bimera when it was flagged in at least `min_sample_fraction`
    of the samples it occurs in, or when it was flagged at least once and was
    not flagged in at most `ignore_n_negatives` samples.

    Returns
    -------
    pd.Series
        Boolean flags indexed by the table's columns.
    """
    flags = _flag_matrix(
        seqtab,
        min_fold_parent_over_abundance,
        min_parent_abundance,
        allow_one_off,
        min_one_off_parent_distance,
        threads,
    )
    nflag = flags.sum(axis=0)
    nsam = (seqtab > 0).sum(axis=0)
    return (nflag > 0) & ((nflag >= nsam * min_sample_fraction) | (nsam - nflag <= ignore_n_negatives))


def make_sequence_table(samples: Dict[str, Dict[str, int]]) -> pd.DataFrame:
    """
    Merge per-sample unique sequences into a sample x sequence abundance table.

    Parameters
    ----------
    samples : dict[str, dict[str, int]]
        File identifier -> {sequence: abundance}.

    Returns
    -------
    pd.DataFrame
        Rows are samples in input order, columns are sequences ordered by
        decreasing total abundance (ties keep first appearance).
    """
    sequences = list(dict.fromkeys(seq for uniques in samples.values() for seq in uniques))
    seqtab = pd.DataFrame(
        np.zeros((len(samples), len(sequences)), dtype=np.int64),
        index=pd.Index(list(samples), name="file"),
        columns=sequences,
    )
    for file_id, uniques in samples.items():
        if uniques:
            seqtab.loc[file_id, list(uniques)] = list(uniques.values())

    order = np.argsort(-seqtab.sum(axis=0).to_numpy(), kind="stable")
    seqtab = seqtab.iloc[:, order]

    lengths = {len(seq) for seq in seqtab.columns}
    if len(lengths) > 1:
        logging.warning(f"The sequences being tabled vary in length ({min(lengths)}-{max(lengths)} bp).")

    logging.info(f"Sequence table: {seqtab.shape[0]} samples, {seqtab.shape[1]} unique sequences.")
    return seqtab


def remove_bimera_denovo(
    seqtab: pd.DataFrame,
    method: str = "consensus",
    allow_one_off: bool = False,
    min_fold_parent_over_abundance: float = 2,
    min_parent_abundance: int = 8,
    threads: int = 1,
) -> pd.DataFrame:
    """
    Remove bimeric sequences from a sequence table.

    Parameters
    ----------
    seqtab : pd.DataFrame
        Sample x sequence abundance table from `make_sequence_table`.
    method : str, optional
        "pooled": samples are pooled and checked once.
        "consensus": samples are checked independently and a consensus is taken.
        "per-sample": samples are treated independently; bimeric cells are
        zeroed and sequences left without reads are dropped.
    allow_one_off, min_fold_parent_over_abundance, min_parent_abundance, threads
        See `is_bimera_denovo`.

    Returns
    -------
    pd.DataFrame
        The table without chimeric sequence columns.
    """
    n_input = seqtab.shape[1]

    if method == "pooled":
        bim = is_bimera_denovo(
            seqtab.sum(axis=0),
            min_fold_parent_over_abundance=min_fold_parent_over_abundance,
            min_parent_abundance=min_parent_abundance,
            allow_one_off=allow_one_off,
            threads=threads,
        )
        nochim = seqtab.loc[:, ~bim.to_numpy()]
    elif method == "consensus":
        bim = is_bimera_denovo_table(
            seqtab,
            min_fold_parent_over_abundance=min_fold_parent_over_abundance,
            min_parent_abundance=min_parent_abundance,
            allow_one_off=allow_one_off,
            threads=threads,
        )
        nochim = seqtab.loc[:, ~bim.to_numpy()]
    elif method == "per-sample":
        flags = _flag_matrix(
            seqtab,
            min_fold_parent_over_abundance,
            min_parent_abundance,
            allow_one_off,
            MIN_ONE_OFF_PARENT_DISTANCE,
            threads,
        )
        logging.info(f"Flagged {int(flags.to_numpy().sum())} bimeric sample/sequence entries.")
        nochim = seqtab.mask(flags, 0)
        nochim = nochim.loc[:, nochim.sum(axis=0).to_numpy() > 0]
    else:
        raise ValueError(f"Unknown bimera method '{method}'.")

    n_removed = n_input - nochim.shape[1]
    logging.info(f"Identified {n_removed} bimeras out of {n_input} input sequences.")
    return nochim
