"""Run configuration for ChimRem, resolved once from the command line."""

from dataclasses import dataclass
from typing import Optional

METHODS = ("pooled", "consensus", "per-sample")


@dataclass(frozen=True)
class ChimRemConfig:
    """
    Immutable settings for one chimera-removal run.

    Attributes
    ----------
    dada_obj : str
        Path to the exported denoised-sample collection.
    manifest : str or None
        Path to the sample manifest (CSV with `sample.id` and
        `absolute.filepath` columns). Required for the count tables.
    method : str
        Bimera detection mode, one of "pooled", "consensus" or "per-sample".
    allow_one_off : bool
        Also flag sequences one mismatch or indel away from an exact bimera.
    min_parent_abundance : int
        Minimum abundance of a candidate parent.
    min_fold_parent_over_abundance : float
        A candidate parent must be more than this many times as abundant as
        the sequence being tested.
    stats, table, reltable, repseqs : str
        Output paths.
    threads : int
        Number of worker processes for the bimera checks.
    verbose : bool
        Emit progress messages on stderr.
    """

    dada_obj: str = "dd.rds"
    manifest: Optional[str] = None
    method: str = "pooled"
    allow_one_off: bool = True
    min_parent_abundance: int = 8
    min_fold_parent_over_abundance: float = 2
    stats: str = "denoise_stats.tsv"
    table: str = "feature-table.tsv"
    reltable: str = "rel-feature-table.tsv"
    repseqs: str = "sequences.fasta"
    threads: int = 1
    verbose: bool = False

    def __post_init__(self):
        if self.method not in METHODS:
            raise ValueError(
                f"Unknown bimera method '{self.method}'; expected one of {', '.join(METHODS)}."
            )
        if self.threads < 1:
            raise ValueError("threads must be at least 1.")

    @classmethod
    def from_args(cls, args) -> "ChimRemConfig":
        """Build a configuration from a parsed argparse namespace."""
        return cls(
            dada_obj=args.dadaObj,
            manifest=args.manifest or None,
            method=args.method,
            allow_one_off=args.allowOneOff,
            min_parent_abundance=args.minab,
            min_fold_parent_over_abundance=args.overab,
            stats=args.stats,
            table=args.table,
            reltable=args.reltable,
            repseqs=args.repseqs,
            threads=args.threads,
            verbose=args.verbose,
        )
