"""Services for Concept Mapper.

Services implement the mapping engine's business logic:
- ConceptSetResolver: expand a general concept into its OMOP concept set
- FuzzyMatcher: Jaro-Winkler search over the vocabulary
- AlignmentStore: alignments, source rows, mappings, comments
- ImportMergeEngine: merge mapping files into an alignment
- EvaluationAggregator: reviewer votes and consensus
- MappingExporter: STCM, Usagi and archive exports
"""

from concept_mapper.services.alignment_store import AlignmentStore, RowIndex, dedup_key
from concept_mapper.services.concept_set import ConceptSetResolver, ResolvedConcept
from concept_mapper.services.evaluation import (
    AlignmentSummary,
    EvaluationAggregator,
    ExportFilter,
    VoteCounts,
    classify,
)
from concept_mapper.services.export import ExportFile, MappingExporter
from concept_mapper.services.fuzzy_search import ConceptFilters, ConceptMatch, FuzzyMatcher
from concept_mapper.services.identity import IdentityRegistry, ResolvedIdentity
from concept_mapper.services.import_formats import ColumnMapping, ParsedImport, parse_import
from concept_mapper.services.import_merge import ImportMergeEngine, ImportSummary

__all__ = [
    # Alignment store
    "AlignmentStore",
    "RowIndex",
    "dedup_key",
    # Concept sets
    "ConceptSetResolver",
    "ResolvedConcept",
    # Evaluation
    "AlignmentSummary",
    "EvaluationAggregator",
    "ExportFilter",
    "VoteCounts",
    "classify",
    # Export
    "ExportFile",
    "MappingExporter",
    # Search
    "ConceptFilters",
    "ConceptMatch",
    "FuzzyMatcher",
    # Identity
    "IdentityRegistry",
    "ResolvedIdentity",
    # Import
    "ColumnMapping",
    "ParsedImport",
    "parse_import",
    "ImportMergeEngine",
    "ImportSummary",
]
