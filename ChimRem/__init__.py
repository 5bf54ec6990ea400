"""
ChimRem: A command-line tool for removing chimeric sequences from denoised
amplicon data and writing ASV count tables, relative-abundance tables,
representative sequences and read-tracking stats.

This package is intended to be used exclusively via the command line.
The main entry point is defined in `cli.py`.
"""

__version__ = "1.0.0"
