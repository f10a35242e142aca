"""
Service layer orchestrators for repodocs.
"""
from .ingestion import IngestionCallbacks, IngestionService, RunResult, RunState

__all__ = ["IngestionCallbacks", "IngestionService", "RunResult", "RunState"]
