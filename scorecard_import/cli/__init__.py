"""Command line entry point (``python -m scorecard_import.cli``)."""
