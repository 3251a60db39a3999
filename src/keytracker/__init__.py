"""Mythic+ run ingestion and weekly aggregation."""
