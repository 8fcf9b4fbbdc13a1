"""
Warehouse access: connection, table definitions, staging load and merge.
"""

from jsm_sync.database.connection import Warehouse
from jsm_sync.database.merge import MergeResult, Reconciler
from jsm_sync.database.staging import StagingLoader

__all__ = ['Warehouse', 'MergeResult', 'Reconciler', 'StagingLoader']
