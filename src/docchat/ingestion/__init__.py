"""
Ingestion — PDF text extraction, chunking, embedding and indexing.

This module turns uploaded documents into embedded chunks stored both in
the metadata store and in the vector index, reporting progress on the
document record as it goes.
"""
