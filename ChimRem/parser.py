import gzip
import io
import json
import logging
import os
from typing import Dict

import pandas as pd

GZIP_MAGIC = b"\x1f\x8b"
MANIFEST_COLUMNS = ("sample.id", "absolute.filepath")
DENOISED_COLUMNS = ("file", "sequence", "abundance")


def _read_text(path: str) -> str:
    """Read a possibly gzip-compressed text file, detected by its magic bytes."""
    with open(path, "rb") as handle:
        raw = handle.read()
    if raw[:2] == GZIP_MAGIC:
        raw = gzip.decompress(raw)
    return raw.decode("utf-8")


def _to_abundance(value, file_id: str) -> int:
    abundance = int(value)
    if abundance != value or abundance < 0:
        raise ValueError(
            f"Invalid abundance {value!r} for a sequence in '{file_id}': "
            "abundances must be non-negative integers."
        )
    return abundance


def _uniques_from_json(file_id: str, entry) -> Dict[str, int]:
    """
    Convert one sample entry of a JSON export into a sequence -> abundance map.

    Accepted shapes are a plain {sequence: abundance} object, a dada export
    carrying that object under "denoised", or a list of
    {"sequence": ..., "abundance": ...} records (merged pairs).
    """
    if isinstance(entry, dict) and "denoised" in entry:
        entry = entry["denoised"]

    if isinstance(entry, list):
        pairs = []
        for record in entry:
            try:
                pairs.append((record["sequence"], record["abundance"]))
            except (KeyError, TypeError):
                raise ValueError(
                    f"Records for '{file_id}' must have 'sequence' and 'abundance' fields."
                )
    elif isinstance(entry, dict):
        pairs = list(entry.items())
    else:
        raise ValueError(f"Unsupported entry type for '{file_id}': {type(entry).__name__}")

    uniques: Dict[str, int] = {}
    for sequence, abundance in pairs:
        sequence = str(sequence).upper()
        uniques[sequence] = uniques.get(sequence, 0) + _to_abundance(abundance, file_id)
    return uniques


def _denoised_from_table(text: str, path: str) -> Dict[str, Dict[str, int]]:
    df = pd.read_csv(io.StringIO(text), sep="\t", dtype={"file": str, "sequence": str})
    missing = [c for c in DENOISED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(
            f"Cannot parse denoised data in {path}: missing column(s) {', '.join(missing)}."
        )

    samples: Dict[str, Dict[str, int]] = {}
    for file_id, group in df.groupby("file", sort=False):
        uniques: Dict[str, int] = {}
        for sequence, abundance in zip(group["sequence"].str.upper(), group["abundance"]):
            uniques[sequence] = uniques.get(sequence, 0) + _to_abundance(abundance, file_id)
        samples[file_id] = uniques
    return samples


def read_denoised(path: str) -> Dict[str, Dict[str, int]]:
    """
    Load a denoised-sample collection.

    The file may be JSON (optionally gzipped) keyed by file identifier, or a
    tab-separated long table with `file`, `sequence` and `abundance` columns.
    The format is detected from the content, not the file name.

    Parameters
    ----------
    path : str
        Path to the exported denoised data.

    Returns
    -------
    dict[str, dict[str, int]]
        File identifier -> {sequence: abundance}, in input order.
    """
    try:
        text = _read_text(path)
    except UnicodeDecodeError:
        raise ValueError(
            f"Cannot parse denoised data in {path}: not a text export. "
            "R serialized (.rds) objects must be exported to JSON or TSV first."
        )

    if text.lstrip().startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Cannot parse denoised data in {path}: {e}")
        if not isinstance(data, dict):
            raise ValueError(f"Cannot parse denoised data in {path}: expected an object keyed by file.")
        samples = {str(file_id): _uniques_from_json(str(file_id), entry) for file_id, entry in data.items()}
    else:
        samples = _denoised_from_table(text, path)

    if not samples:
        raise ValueError(f"No samples found in {path}.")

    logging.info(f"Loaded denoised data for {len(samples)} samples from {path}.")
    return samples


def read_manifest(path: str) -> Dict[str, str]:
    """
    Read the sample manifest and map file basenames to sample ids.

    Parameters
    ----------
    path : str
        Comma-separated manifest with a header row containing at least
        `sample.id` and `absolute.filepath`.

    Returns
    -------
    dict[str, str]
        File basename -> sample id. When a basename is listed twice the
        first entry wins, matching a first-match lookup.
    """
    manifest = pd.read_csv(path, sep=",", dtype=str, keep_default_na=False)
    missing = [c for c in MANIFEST_COLUMNS if c not in manifest.columns]
    if missing:
        raise ValueError(f"Manifest file must contain {' and '.join(repr(c) for c in missing)} column(s).")

    file_to_sample: Dict[str, str] = {}
    for sample_id, filepath in zip(manifest["sample.id"], manifest["absolute.filepath"]):
        file_to_sample.setdefault(os.path.basename(filepath), sample_id)
    return file_to_sample
