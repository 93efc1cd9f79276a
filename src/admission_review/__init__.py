"""Batch verification orchestrator for admission documents."""
