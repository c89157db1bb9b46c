from .config import PipelineConfig, load_config
from .genotypes import GenotypeMatrix, Locus, read_genotype_table
from .phase import reconcile_phase
from .pipeline import LinkageMapPipeline
from .segregation import SegregationTable, SymbolAliases, encode_segregation

__all__ = [
    "PipelineConfig",
    "load_config",
    "LinkageMapPipeline",
    "GenotypeMatrix",
    "Locus",
    "read_genotype_table",
    "SegregationTable",
    "SymbolAliases",
    "encode_segregation",
    "reconcile_phase",
]
