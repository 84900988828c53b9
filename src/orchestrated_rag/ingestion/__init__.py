"""
Ingestion — document loading, chunking, and embedding into the vector store.

This module is responsible for the pipeline that converts raw documents
(PDF, DOCX, Markdown, plain text) into embedded chunks held by the vector
store, and for skipping that work when the stored snapshot is current.
"""
