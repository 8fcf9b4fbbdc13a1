"""
Reconciler
Merges the staging table into the target table by key, then empties staging.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import Table, delete, func, insert, select, update

from jsm_sync.database.connection import Warehouse
from jsm_sync.normalizer import NORMALIZED_COLUMNS
from jsm_sync.utils.helpers import Clock, utc_now
from jsm_sync.utils.logger import get_logger

logger = get_logger(__name__)

# Columns copied from staging on update; the key is the join column
UPDATE_COLUMNS = [column for column in NORMALIZED_COLUMNS if column != 'key']

# Columns written on insert
INSERT_COLUMNS = NORMALIZED_COLUMNS + ['sla_breached', 'last_sync']


@dataclass
class MergeResult:
    updated: int = 0
    inserted: int = 0
    cleared: int = 0


class Reconciler:
    """
    Idempotent upsert from staging into target.
    
    One transaction:
      1. matched keys: every normalized column takes the staging value and
         ``last_sync`` is stamped with the injected clock;
      2. unmatched keys: the row is inserted;
      3. staging is emptied, whatever the first two steps touched.
    
    When staging holds a key more than once (overlapping runs), the row with
    the highest ``staging_id`` is the one applied.
    """
    
    def __init__(self, warehouse: Warehouse, clock: Clock = utc_now):
        self.warehouse = warehouse
        self.clock = clock
    
    def reconcile(self, target: Optional[Table] = None, staging: Optional[Table] = None) -> MergeResult:
        """
        Merge ``staging`` into ``target`` (the warehouse tables by default).
        
        Raises:
            sqlalchemy.exc.SQLAlchemyError: If the warehouse rejects a statement;
                the transaction is rolled back as a whole
        """
        target = target if target is not None else self.warehouse.target
        staging = staging if staging is not None else self.warehouse.staging
        now = self.clock()
        
        result = MergeResult()
        with self.warehouse.engine.begin() as conn:
            result.updated = conn.execute(self._update_matched(target, staging, now)).rowcount
            result.inserted = conn.execute(self._insert_unmatched(target, staging)).rowcount
            result.cleared = conn.execute(delete(staging)).rowcount
        
        logger.info(
            f"Merged {staging.name} into {target.name}: updated={result.updated} "
            f"inserted={result.inserted} cleared={result.cleared}"
        )
        return result
    
    @staticmethod
    def _latest_ids(staging: Table):
        """staging_id of the newest staging row per key."""
        dup = staging.alias('dup')
        return select(func.max(dup.c.staging_id)).group_by(dup.c['key'])
    
    def _update_matched(self, target: Table, staging: Table, now):
        src = staging.alias('src')
        
        def latest_value(column):
            return (
                select(src.c[column])
                .where(src.c['key'] == target.c['key'])
                .where(src.c.staging_id.in_(self._latest_ids(staging)))
                .scalar_subquery()
            )
        
        values = {column: latest_value(column) for column in UPDATE_COLUMNS}
        values['last_sync'] = now
        
        staged = staging.alias('staged')
        return (
            update(target)
            .where(target.c['key'].in_(select(staged.c['key'])))
            .values(values)
        )
    
    def _insert_unmatched(self, target: Table, staging: Table):
        src = staging.alias('src')
        existing = target.alias('existing')
        
        rows = (
            select(*[src.c[column] for column in INSERT_COLUMNS])
            .where(src.c.staging_id.in_(self._latest_ids(staging)))
            .where(src.c['key'].not_in(select(existing.c['key'])))
        )
        return insert(target).from_select(INSERT_COLUMNS, rows)
