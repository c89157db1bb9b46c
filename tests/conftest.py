import sys
from pathlib import Path

import pytest

from linkmap_pipeline.genotypes import GenotypeMatrix, Locus
from linkmap_pipeline.segregation import encode_segregation

TESTS_DIR = Path(__file__).resolve().parent
FAKE_ENGINE = TESTS_DIR / "fake_carthagene.py"

NA = None

LOCI = [
    Locus("m1", "1", 100),
    Locus("m2", "1", 200),
    Locus("m3", "1", 300),
    Locus("m4", "1", 400),
    Locus("m5", "2", 100),
    Locus("m6", "2", 200),
    Locus("m7", "2", 300),
]
INDIVIDUALS = ["P1", "P2", "O1", "O2", "O3", "O4", "O5", "O6"]

# Doses per locus: both parents first, then six offspring.
#   m1 lmxll, m2 nnxnp, m3 hkxhk, m4 and m5 non-segregating,
#   m6 missing parent 1, m7 nnxnp with one incompatible offspring call (O5).
DOSES = [
    [1, 0, 0, 1, 0, 1, NA, 1],
    [0, 1, 1, 1, 0, 0, 1, 0],
    [1, 1, 0, 1, 2, 1, 1, NA],
    [0, 0, 0, 0, 0, 0, 0, 0],
    [0, 2, 1, 1, 1, 1, 1, 1],
    [NA, 1, 0, 1, 2, 0, 1, 2],
    [2, 1, 2, 1, 2, 1, 0, 2],
]


@pytest.fixture
def genotype_matrix():
    return GenotypeMatrix.from_array(DOSES, LOCI, INDIVIDUALS)


@pytest.fixture
def encoding(genotype_matrix):
    return encode_segregation(genotype_matrix, ["P1", "P2"])


@pytest.fixture
def segregation_table(encoding):
    return encoding.table


@pytest.fixture
def genotype_tsv(tmp_path):
    lines = ["\t".join(["locus", "chromosome", "position", *INDIVIDUALS])]
    for locus, doses in zip(LOCI, DOSES):
        calls = ["NA" if dose is None else str(dose) for dose in doses]
        lines.append("\t".join([locus.locus_id, locus.chromosome, str(locus.position), *calls]))
    path = tmp_path / "genotypes.tsv"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def fake_engine_command():
    return [sys.executable, str(FAKE_ENGINE)]
