"""Offline jobs that populate the database.

- ingest_statutes: chunk and embed statute/policy text into knowledge_chunks.
- sync_hud: load HUD Fair Market Rents into market_baselines.
"""
