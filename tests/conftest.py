"""Shared fixtures: synthetic parents and a known bimera."""

import json
import random

import pytest

SEQ_LENGTH = 200
BREAKPOINT = 100
# Positions where the second parent differs from the first
SUBSTITUTION_SITES = (15, 35, 55, 75, 90, 110, 130, 150, 170, 185)
# A position shared by both parents, inside the second parent's part of the bimera
SHARED_SITE = 140

SWAP = {"A": "C", "C": "G", "G": "T", "T": "A"}


def random_sequence(rng: random.Random, length: int = SEQ_LENGTH) -> str:
    return "".join(rng.choice("ACGT") for _ in range(length))


def substitute(sequence: str, pos: int) -> str:
    """Replace the base at `pos` with a different one."""
    return sequence[:pos] + SWAP[sequence[pos]] + sequence[pos + 1:]


@pytest.fixture
def parents():
    """Two parents on a shared backbone, differing at the substitution sites."""
    rng = random.Random(20240611)
    parent_a = random_sequence(rng)
    parent_b = parent_a
    for pos in SUBSTITUTION_SITES:
        parent_b = substitute(parent_b, pos)
    return parent_a, parent_b


@pytest.fixture
def bimera(parents):
    """Left part of the first parent fused to the right part of the second."""
    parent_a, parent_b = parents
    return parent_a[:BREAKPOINT] + parent_b[BREAKPOINT:]


@pytest.fixture
def unrelated():
    """Three sequences sharing no structure, for chimera-free scenarios."""
    rng = random.Random(7)
    return random_sequence(rng), random_sequence(rng), random_sequence(rng)


@pytest.fixture
def scenario_samples(unrelated):
    """A.fastq holds two sequences (100, 5), B.fastq one (50)."""
    s1, s2, s3 = unrelated
    return {
        "A.fastq": {s1: 100, s2: 5},
        "B.fastq": {s3: 50},
    }


@pytest.fixture
def manifest_path(tmp_path):
    path = tmp_path / "manifest.csv"
    path.write_text(
        "sample.id,absolute.filepath,direction\n"
        "S1,/data/reads/A.fastq,forward\n"
        "S2,/data/reads/B.fastq,forward\n"
    )
    return path


@pytest.fixture
def dada_json(tmp_path, scenario_samples):
    path = tmp_path / "dd.json"
    path.write_text(json.dumps(scenario_samples))
    return path
