"""Load the OMOP vocabulary and the concept dictionary.

The vocabulary comes from Athena tab-separated files (CONCEPT.csv,
CONCEPT_SYNONYM.csv, CONCEPT_ANCESTOR.csv). The dictionary is three
comma-separated files (general_concepts.csv, general_concept_mappings.csv,
custom_concepts.csv). Both are read-only inputs for the mapping engine.

Usage:
    # Load from local Athena files
    python -m concept_mapper.scripts.load_vocabulary --path /path/to/vocab/

    # Load specific vocabularies only
    python -m concept_mapper.scripts.load_vocabulary --path /path/to/vocab/ --vocabularies SNOMED,LOINC

    # Load the dictionary as well
    python -m concept_mapper.scripts.load_vocabulary --path /path/to/vocab/ --dictionary /path/to/dictionary/

Requirements:
    1. Register at https://athena.ohdsi.org (free)
    2. Download vocabularies
    3. Extract the downloaded zip file
    4. Run this script pointing to the extracted directory
"""

import argparse
import csv
import logging
import sys
from pathlib import Path

from sqlalchemy import delete, func, insert, select
from sqlalchemy.orm import Session

from concept_mapper.core.database import close_db, get_session_factory, init_db
from concept_mapper.models import (
    Concept,
    ConceptAncestor,
    ConceptSynonym,
    CustomConcept,
    DictionaryMappingEntry,
    GeneralConcept,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Some Athena concept names exceed the default csv field limit
csv.field_size_limit(sys.maxsize)

TRUE_VALUES = {"1", "true", "t", "yes", "y"}


def clear_vocabulary(session: Session) -> None:
    """Clear existing vocabulary data."""
    session.execute(delete(ConceptAncestor))
    session.execute(delete(ConceptSynonym))
    session.execute(delete(Concept))
    session.commit()
    logger.info("Cleared existing vocabulary data")


def _flush_batch(session: Session, model, batch: list[dict]) -> int:
    if batch:
        session.execute(insert(model), batch)
    return len(batch)


def load_concepts(
    session: Session,
    concept_file: Path,
    vocabularies: set[str] | None = None,
    domains: set[str] | None = None,
    batch_size: int = 10000,
) -> int:
    """Load concepts from CONCEPT.csv.

    Non-standard and invalid concepts are kept: source codes are often
    non-standard, and search filters on validity.

    Returns:
        Number of concepts loaded
    """
    logger.info(f"Loading concepts from {concept_file}")
    if vocabularies:
        logger.info(f"Filtering to vocabularies: {vocabularies}")
    if domains:
        logger.info(f"Filtering to domains: {domains}")

    count = 0
    batch = []
    with open(concept_file, encoding="utf-8") as f:
        reader = csv.DictReader(f, delimiter="\t")
        for row in reader:
            if vocabularies and row["vocabulary_id"] not in vocabularies:
                continue
            if domains and row["domain_id"] not in domains:
                continue

            batch.append({
                "concept_id": int(row["concept_id"]),
                "concept_name": row["concept_name"][:500],
                "domain_id": row["domain_id"],
                "vocabulary_id": row["vocabulary_id"],
                "concept_class_id": row["concept_class_id"],
                "standard_concept": row.get("standard_concept") or None,
                "concept_code": row.get("concept_code", ""),
                "invalid_reason": row.get("invalid_reason") or None,
            })

            if len(batch) >= batch_size:
                count += _flush_batch(session, Concept, batch)
                logger.info(f"Loaded {count:,} concepts...")
                batch = []

        count += _flush_batch(session, Concept, batch)

    session.commit()
    logger.info(f"Loaded {count:,} concepts total")
    return count


def _loaded_concept_ids(session: Session) -> set[int]:
    return set(session.execute(select(Concept.concept_id)).scalars())


def load_synonyms(session: Session, synonym_file: Path, batch_size: int = 10000) -> int:
    """Load synonyms for the concepts already in the database."""
    logger.info(f"Loading synonyms from {synonym_file}")
    valid_concept_ids = _loaded_concept_ids(session)

    count = 0
    batch = []
    with open(synonym_file, encoding="utf-8") as f:
        reader = csv.DictReader(f, delimiter="\t")
        for row in reader:
            concept_id = int(row["concept_id"])
            if concept_id not in valid_concept_ids:
                continue

            batch.append({
                "concept_id": concept_id,
                "concept_synonym_name": row["concept_synonym_name"][:1000],
                "language_concept_id": int(row.get("language_concept_id") or 4180186),
            })

            if len(batch) >= batch_size:
                count += _flush_batch(session, ConceptSynonym, batch)
                batch = []

        count += _flush_batch(session, ConceptSynonym, batch)

    session.commit()
    logger.info(f"Loaded {count:,} synonyms total")
    return count


def load_ancestors(session: Session, ancestor_file: Path, batch_size: int = 50000) -> int:
    """Load the hierarchy closure, restricted to pairs of loaded concepts."""
    logger.info(f"Loading concept ancestors from {ancestor_file}")
    valid_concept_ids = _loaded_concept_ids(session)

    count = 0
    batch = []
    with open(ancestor_file, encoding="utf-8") as f:
        reader = csv.DictReader(f, delimiter="\t")
        for row in reader:
            ancestor_id = int(row["ancestor_concept_id"])
            descendant_id = int(row["descendant_concept_id"])
            if ancestor_id not in valid_concept_ids or descendant_id not in valid_concept_ids:
                continue

            batch.append({
                "ancestor_concept_id": ancestor_id,
                "descendant_concept_id": descendant_id,
                "min_levels_of_separation": int(row["min_levels_of_separation"]),
                "max_levels_of_separation": int(row["max_levels_of_separation"]),
            })

            if len(batch) >= batch_size:
                count += _flush_batch(session, ConceptAncestor, batch)
                logger.info(f"Loaded {count:,} ancestor pairs...")
                batch = []

        count += _flush_batch(session, ConceptAncestor, batch)

    session.commit()
    logger.info(f"Loaded {count:,} ancestor pairs total")
    return count


def load_dictionary(session: Session, dictionary_path: Path) -> dict[str, int]:
    """Replace the concept dictionary with the files in dictionary_path."""
    general_file = dictionary_path / "general_concepts.csv"
    mappings_file = dictionary_path / "general_concept_mappings.csv"
    custom_file = dictionary_path / "custom_concepts.csv"
    if not general_file.exists():
        raise FileNotFoundError(f"general_concepts.csv not found in {dictionary_path}")

    session.execute(delete(DictionaryMappingEntry))
    session.execute(delete(CustomConcept))
    session.execute(delete(GeneralConcept))

    counts = {"general_concepts": 0, "mapping_entries": 0, "custom_concepts": 0}

    with open(general_file, encoding="utf-8") as f:
        rows = [
            {
                "general_concept_id": int(row["general_concept_id"]),
                "name": row["general_concept_name"] if "general_concept_name" in row else row["name"],
                "category": row.get("category") or None,
                "subcategory": row.get("subcategory") or None,
                "comments": row.get("comments") or None,
            }
            for row in csv.DictReader(f)
        ]
        counts["general_concepts"] = _flush_batch(session, GeneralConcept, rows)

    if mappings_file.exists():
        with open(mappings_file, encoding="utf-8") as f:
            rows = [
                {
                    "general_concept_id": int(row["general_concept_id"]),
                    "omop_concept_id": int(row["omop_concept_id"]),
                    "include_descendants": (row.get("include_descendants") or "").lower() in TRUE_VALUES,
                    "include_ancestors": (row.get("include_ancestors") or "").lower() in TRUE_VALUES,
                }
                for row in csv.DictReader(f)
            ]
            counts["mapping_entries"] = _flush_batch(session, DictionaryMappingEntry, rows)

    if custom_file.exists():
        with open(custom_file, encoding="utf-8") as f:
            rows = [
                {
                    "custom_concept_id": int(row["custom_concept_id"]),
                    "general_concept_id": int(row["general_concept_id"]),
                    "vocabulary_id": row["vocabulary_id"],
                    "concept_code": row.get("concept_code", ""),
                    "concept_name": row["concept_name"],
                    "domain_id": row.get("domain_id") or None,
                    "concept_class_id": row.get("concept_class_id") or None,
                }
                for row in csv.DictReader(f)
            ]
            counts["custom_concepts"] = _flush_batch(session, CustomConcept, rows)

    session.commit()
    logger.info(
        f"Dictionary loaded: {counts['general_concepts']} general concepts, "
        f"{counts['mapping_entries']} mapping entries, {counts['custom_concepts']} custom concepts"
    )
    return counts


def load_vocabulary(
    session: Session,
    vocab_path: Path,
    vocabularies: set[str] | None = None,
    domains: set[str] | None = None,
    clear_existing: bool = True,
) -> dict[str, int]:
    """Load the Athena files found in vocab_path.

    Returns:
        Dictionary with counts of loaded concepts, synonyms and ancestor pairs
    """
    concept_file = vocab_path / "CONCEPT.csv"
    synonym_file = vocab_path / "CONCEPT_SYNONYM.csv"
    ancestor_file = vocab_path / "CONCEPT_ANCESTOR.csv"

    if not concept_file.exists():
        raise FileNotFoundError(f"CONCEPT.csv not found in {vocab_path}")

    if clear_existing:
        clear_vocabulary(session)

    concept_count = load_concepts(session, concept_file, vocabularies, domains)

    synonym_count = 0
    if synonym_file.exists():
        synonym_count = load_synonyms(session, synonym_file)
    else:
        logger.warning("CONCEPT_SYNONYM.csv not found, skipping synonyms")

    ancestor_count = 0
    if ancestor_file.exists():
        ancestor_count = load_ancestors(session, ancestor_file)
    else:
        logger.warning("CONCEPT_ANCESTOR.csv not found, descendant expansion will be empty")

    by_domain = session.execute(
        select(Concept.domain_id, func.count())
        .group_by(Concept.domain_id)
        .order_by(func.count().desc())
    ).all()
    logger.info("Concepts by domain:")
    for domain, count in by_domain:
        logger.info(f"  {domain}: {count:,}")

    return {
        "concepts": concept_count,
        "synonyms": synonym_count,
        "ancestors": ancestor_count,
    }


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Load OMOP vocabulary and concept dictionary")
    parser.add_argument(
        "--path",
        type=Path,
        required=True,
        help="Directory containing CONCEPT.csv, CONCEPT_SYNONYM.csv and CONCEPT_ANCESTOR.csv",
    )
    parser.add_argument(
        "--dictionary",
        type=Path,
        default=None,
        help="Directory containing general_concepts.csv, general_concept_mappings.csv, custom_concepts.csv",
    )
    parser.add_argument(
        "--vocabularies",
        type=str,
        default=None,
        help="Comma-separated list of vocabulary_ids to load (default: all)",
    )
    parser.add_argument(
        "--domains",
        type=str,
        default=None,
        help="Comma-separated list of domain_ids to load (default: all)",
    )
    parser.add_argument(
        "--no-clear",
        action="store_true",
        help="Don't clear existing vocabulary data",
    )
    args = parser.parse_args()

    vocabularies = {v.strip() for v in args.vocabularies.split(",")} if args.vocabularies else None
    domains = {d.strip() for d in args.domains.split(",")} if args.domains else None

    init_db()
    try:
        with get_session_factory()() as session:
            result = load_vocabulary(
                session,
                args.path,
                vocabularies=vocabularies,
                domains=domains,
                clear_existing=not args.no_clear,
            )
            logger.info(
                f"Load complete: {result['concepts']:,} concepts, {result['synonyms']:,} synonyms, "
                f"{result['ancestors']:,} ancestor pairs"
            )
            if args.dictionary:
                load_dictionary(session, args.dictionary)
    finally:
        close_db()


if __name__ == "__main__":
    main()
