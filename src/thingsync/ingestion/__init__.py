"""Ingestion layer.

This package fetches snapshots from the public and private sources and merges
them into the registry.
"""

from thingsync.ingestion.reconcile import ReconcileResult, Reconciler

__all__ = ["ReconcileResult", "Reconciler"]
