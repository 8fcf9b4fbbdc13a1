"""
Staging Loader
Appends one fetch run's normalized rows to the staging table.
"""

from typing import Dict, Iterable

from sqlalchemy import insert

from jsm_sync.database.connection import Warehouse
from jsm_sync.normalizer import COLUMNS
from jsm_sync.utils.helpers import chunk_list
from jsm_sync.utils.logger import get_logger

logger = get_logger(__name__)


class StagingLoader:
    """Bulk-appends a batch to staging as a single transaction."""
    
    def __init__(self, warehouse: Warehouse, batch_size: int = 500):
        self.warehouse = warehouse
        self.batch_size = batch_size
    
    def load(self, records: Iterable[Dict]) -> int:
        """
        Append records to the staging table.
        
        An empty batch issues no warehouse call and returns 0, which tells the
        orchestrator to skip the merge. Otherwise the whole batch is written in
        one transaction; any failure propagates and nothing is kept.
        
        Returns:
            Number of rows appended
        """
        rows = [{column: record.get(column) for column in COLUMNS} for record in records]
        if not rows:
            logger.info("No rows to stage")
            return 0
        
        staging = self.warehouse.staging
        with self.warehouse.engine.begin() as conn:
            for chunk in chunk_list(rows, self.batch_size):
                conn.execute(insert(staging), chunk)
        
        logger.info(f"Inserted {len(rows)} rows into staging table {staging.name}")
        return len(rows)
