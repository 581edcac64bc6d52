"""Sync jobs: definitions, run ledger, orchestrator and job bodies."""
