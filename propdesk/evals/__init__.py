"""Retrieval diagnostics run against a labelled question set."""
