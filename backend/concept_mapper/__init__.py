"""Concept Mapper: alignment of local source concepts to OMOP vocabularies."""

__version__ = "0.1.0"
