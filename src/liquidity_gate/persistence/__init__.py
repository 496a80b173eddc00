"""Persistence layer — file-backed entity snapshots."""

from liquidity_gate.persistence.entity_store import JsonlEntityStore

__all__ = ["JsonlEntityStore"]
