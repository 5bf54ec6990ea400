"""
ChimRem Command-Line Interface (CLI)

This module provides the command-line interface for ChimRem, a tool for
removing chimeric sequences from denoised amplicon data. It builds the
sequence table, removes bimeras and writes the read-tracking stats, the ASV
count and relative-abundance tables and the representative sequences.
"""

import argparse
import logging
import os
import sys

from . import __version__
from .config import METHODS, ChimRemConfig

# ----------------------------------------------------------------------
# Startup Banner Function
# ----------------------------------------------------------------------
def print_startup_message():
    """Display a styled startup banner for ChimRem on stderr."""
    GREEN = "\033[92m"
    CYAN = "\033[96m"
    RESET = "\033[0m"

    print("\n" + GREEN + "=" * 60 + RESET, file=sys.stderr)
    print(CYAN + f"   ChimRem {__version__} - chimera removal for amplicon ASVs" + RESET, file=sys.stderr)
    print(GREEN + "=" * 60 + RESET + "\n", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="chimrem",
        formatter_class=argparse.RawTextHelpFormatter,
        description=(
            "ChimRem - Remove chimeric sequences from denoised amplicon data and "
            "write ASV tables, sequences and read-tracking stats.\n\n"
            "Example usage:\n"
            "  chimrem \\\n"
            "    --dadaObj results/dd.json \\\n"
            "    --manifest manifest.csv \\\n"
            "    --method consensus \\\n"
            "    --table results/feature-table.tsv \\\n"
            "    --threads 8"
        ),
    )

    # --- Input options ---
    parser.add_argument(
        "--dadaObj",
        default="dd.rds",
        help='Denoised reads per sample, exported as JSON or TSV (default: "dd.rds").',
    )
    parser.add_argument(
        "--manifest",
        default=None,
        help="Manifest file listing sample names and paths to sequence files. No default.",
    )

    # --- Bimera detection options ---
    parser.add_argument(
        "--method",
        choices=METHODS,
        default="pooled",
        help=(
            'Method for bimera identification: "pooled" (all samples are pooled),\n'
            '"consensus" (samples independently checked, consensus decision on each sequence)\n'
            'or "per-sample" (samples are treated independently) (default: pooled).'
        ),
    )
    parser.add_argument(
        "--allowOneOff",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Also flag sequences that have one mismatch or indel to an exact bimera.",
    )
    parser.add_argument(
        "--minab",
        type=int,
        default=8,
        help="Minimum parent abundance (default: 8).",
    )
    parser.add_argument(
        "--overab",
        type=int,
        default=2,
        help="Parent overabundance multiplier (default: 2).",
    )

    # --- Output options ---
    parser.add_argument(
        "--stats",
        default="denoise_stats.tsv",
        help='File for reads before/after chimera removal per sample (default: "denoise_stats.tsv").',
    )
    parser.add_argument(
        "--table",
        default="feature-table.tsv",
        help='File for counts per sample and ASV (default: "feature-table.tsv").',
    )
    parser.add_argument(
        "--reltable",
        default="rel-feature-table.tsv",
        help='File for relative abundances of the ASVs (default: "rel-feature-table.tsv").',
    )
    parser.add_argument(
        "--repseqs",
        default="sequences.fasta",
        help='File for ASV sequences in fasta format (default: "sequences.fasta").',
    )

    # --- Performance and reporting ---
    parser.add_argument(
        "--threads",
        type=int,
        default=1,
        help="Number of parallel workers for bimera detection (default: 1).",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Print progress messages.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version of ChimRem and Biopython, then exit.",
    )
    return parser


def version_string() -> str:
    import Bio

    return f"chimrem version {__version__}, Biopython version {Bio.__version__}"


def run(config: ChimRemConfig) -> None:
    """Run chimera removal and write all outputs."""
    # Heavy imports stay here so --help and --version return quickly
    from .fileutils import (
        build_count_table,
        fasta_records,
        read_tracking_stats,
        relative_abundance,
        write_count_table,
        write_fasta,
        write_relative_table,
        write_stats,
    )
    from .parser import read_denoised, read_manifest
    from .processor import make_sequence_table, remove_bimera_denovo

    logging.info("Chimera removal with DADA2-style bimera detection.")
    logging.info(f"Method: {config.method}, minab: {config.min_parent_abundance}, "
                 f"overab: {config.min_fold_parent_over_abundance}, allowOneOff: {config.allow_one_off}")

    # ----------------------
    # Build table and remove chimeras
    # ----------------------
    samples = read_denoised(config.dada_obj)
    seqtab = make_sequence_table(samples)
    nochim = remove_bimera_denovo(
        seqtab,
        method=config.method,
        allow_one_off=config.allow_one_off,
        min_fold_parent_over_abundance=config.min_fold_parent_over_abundance,
        min_parent_abundance=config.min_parent_abundance,
        threads=config.threads,
    )

    # ----------------------
    # Read-tracking stats
    # ----------------------
    write_stats(read_tracking_stats(samples, nochim), config.stats)
    logging.info(f"Stats saved to: {config.stats}")

    # ----------------------
    # Count tables and sequences
    # ----------------------
    logging.info("Creating count tables and generating sequence file.")
    if not config.manifest:
        raise ValueError("A manifest file (--manifest) is required to create the count tables.")
    file_to_sample = read_manifest(config.manifest)

    count_table = build_count_table(nochim, file_to_sample)
    write_count_table(count_table, config.table)
    write_fasta(fasta_records(count_table), config.repseqs)
    write_relative_table(relative_abundance(count_table), config.reltable)
    logging.info(f"Results saved to: {config.table}, {config.repseqs}, {config.reltable}")

    logging.info("Finished chimera removal")


# -------------------------------------------------------------------------
# Main entry point
# -------------------------------------------------------------------------
def main(argv=None) -> None:
    """Main function for the ChimRem command-line interface."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(version_string(), file=sys.stderr)
        sys.exit(0)

    if not os.path.exists(args.dadaObj):
        parser.error(f"Cannot find {args.dadaObj}. See help (-h).")
    if args.threads < 1:
        parser.error("--threads must be at least 1.")

    config = ChimRemConfig.from_args(args)

    # ----------------------
    # Logging configuration
    # ----------------------
    logging.basicConfig(
        level=logging.INFO if config.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if config.verbose:
        print_startup_message()

    run(config)


if __name__ == "__main__":
    main()
