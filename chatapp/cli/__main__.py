# =============================================================================
# chatapp/cli/__main__.py — Package Entry Point
# =============================================================================
#
# Enables ``python -m chatapp.cli``; delegates to the ingestion CLI.
# =============================================================================

"""Allow ``python -m chatapp.cli`` execution."""

from chatapp.cli.ingest import main

main()
