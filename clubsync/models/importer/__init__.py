from .schema import EntityType, IdMapping, SyncState

__all__ = ["EntityType", "IdMapping", "SyncState"]
