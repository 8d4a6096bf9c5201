# =============================================================================
# chatapp/cli/__init__.py — CLI Module Overview
# =============================================================================
#
# Command-line access to the same ingestion and search services the HTTP
# API serves.  Operators use it to synchronize the index outside of the
# server's startup pass, to preview what a run would change, and to query
# the index from a terminal.
#
#   ingest.py
#      run    — synchronize the index with the document folder
#      plan   — show what a run would add, replace and delete
#      search — semantic search with citations
#      stats  — document and chunk counts per source
#
# Architecture Notes:
#   - argparse, no extra CLI dependency.
#   - The container is assembled with the same factory the API uses
#     (chatapp.main.build_container), so the CLI and the server always
#     agree on providers, chunking and embedding dimension.
# =============================================================================

"""CLI tools for chatapp.

- ``python -m chatapp.cli`` (or ``python -m chatapp.cli.ingest``) — ingest,
  plan, search and inspect the vector index.
"""
