"""
Sync Pipeline Module
Orchestrates one incremental run: fetch from Jira, load to staging, merge.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from jsm_sync.config_manager import SyncSettings
from jsm_sync.database.connection import Warehouse
from jsm_sync.database.merge import MergeResult, Reconciler
from jsm_sync.database.models import SyncRun
from jsm_sync.database.staging import StagingLoader
from jsm_sync.fetcher import IssueFetcher
from jsm_sync.jira_client import JiraClient
from jsm_sync.utils.helpers import Clock, default_since, utc_now, validate_since
from jsm_sync.utils.logger import get_logger

logger = get_logger(__name__)


class SyncError(Exception):
    """A run failed; ``stage`` names the step that raised."""
    
    def __init__(self, stage: str, message: str):
        self.stage = stage
        self.message = message
        super().__init__(f"{stage}: {message}")


@dataclass
class SyncResult:
    since: str
    fetched: int = 0
    loaded: int = 0
    merge: Optional[MergeResult] = None
    run_id: Optional[int] = None
    execution_id: Optional[str] = None
    status: str = 'running'
    
    @property
    def merged(self) -> bool:
        return self.merge is not None


class SyncPipeline:
    """
    Linear run: resolve config -> fetch -> load to staging -> merge (when
    something was loaded). Any failure ends the run; there is no partial
    success and no retry at this level.
    """
    
    def __init__(
        self,
        settings: SyncSettings,
        client: JiraClient = None,
        warehouse: Warehouse = None,
        clock: Clock = utc_now
    ):
        self.settings = settings
        self.clock = clock
        self._client = client
        self._warehouse = warehouse
    
    @property
    def client(self) -> JiraClient:
        if self._client is None:
            self._client = JiraClient.from_settings(self.settings)
        return self._client
    
    @property
    def warehouse(self) -> Warehouse:
        if self._warehouse is None:
            self._warehouse = Warehouse.from_settings(self.settings)
        return self._warehouse
    
    def resolve_since(self, since: Optional[str] = None) -> str:
        """
        Lower time bound for this run.
        
        An explicit value wins over the configured one (SINCE); without either
        the bound is the configured lookback before now (one hour by default).
        """
        value = since or self.settings.since
        if value:
            return validate_since(value)
        return default_since(self.clock(), timedelta(minutes=self.settings.lookback_minutes))
    
    def run(self, since: Optional[str] = None, execution_id: Optional[str] = None) -> SyncResult:
        """
        Execute one sync run.
        
        Raises:
            SyncError: On any failure, wrapping the original exception
        """
        stage = 'config'
        try:
            self.settings.validate()
            result = SyncResult(since=self.resolve_since(since), execution_id=execution_id)
            warehouse = self.warehouse
        except Exception as e:
            logger.error(f"Sync failed at stage={stage}: {e}")
            raise SyncError(stage, str(e)) from e
        
        logger.info(
            f"Starting sync: project={self.settings.project} dataset={self.settings.dataset} "
            f"staging={self.settings.staging_table} location={self.settings.location} since={result.since}"
        )
        result.run_id = self._start_run(result)
        
        try:
            stage = 'fetch'
            fetcher = IssueFetcher(
                self.client,
                pagination=self.settings.pagination,
                page_size=self.settings.page_size,
                max_pages=self.settings.max_pages,
            )
            rows = fetcher.fetch_since(result.since)
            result.fetched = len(rows)
            
            stage = 'load'
            result.loaded = StagingLoader(warehouse).load(rows)
            
            stage = 'merge'
            if result.loaded > 0:
                logger.info("Starting merge to target table")
                result.merge = Reconciler(warehouse, self.clock).reconcile()
            else:
                logger.info("No data to merge, skipping merge operation")
        
        except Exception as e:
            logger.error(
                f"Sync failed at stage={stage}: since={result.since} "
                f"fetched={result.fetched} loaded={result.loaded}: {e}"
            )
            result.status = 'failed'
            self._finish_run(result, error=str(e))
            raise SyncError(stage, str(e)) from e
        
        result.status = 'completed'
        self._finish_run(result)
        logger.info(
            f"Sync completed: since={result.since} fetched={result.fetched} "
            f"loaded={result.loaded} merged={result.merged}"
        )
        return result
    
    # ========================================
    # Run tracking
    # ========================================
    
    def _start_run(self, result: SyncResult) -> Optional[int]:
        """Record the run start; a tracking failure does not stop the run."""
        try:
            with self.warehouse.session_scope() as session:
                sync_run = SyncRun(
                    execution_id=result.execution_id,
                    status='running',
                    since=result.since,
                    started_at=self.clock(),
                )
                session.add(sync_run)
                session.flush()
                return sync_run.id
        except SQLAlchemyError as e:
            logger.warning(f"Could not record sync run start: {e}")
            return None
    
    def _finish_run(self, result: SyncResult, error: str = None) -> None:
        if result.run_id is None:
            return
        
        try:
            with self.warehouse.session_scope() as session:
                sync_run = session.get(SyncRun, result.run_id)
                if sync_run is None:
                    return
                sync_run.status = result.status
                sync_run.completed_at = self.clock()
                sync_run.records_fetched = result.fetched
                sync_run.records_loaded = result.loaded
                sync_run.merged = result.merged
                if result.merge:
                    sync_run.records_updated = result.merge.updated
                    sync_run.records_inserted = result.merge.inserted
                if error:
                    sync_run.error_message = error[:1000]
        except SQLAlchemyError as e:
            logger.warning(f"Could not record sync run {result.run_id} outcome: {e}")
    
    def close(self) -> None:
        if self._client is not None:
            self._client.close()
        if self._warehouse is not None:
            self._warehouse.dispose()


def run_sync(
    since: Optional[str] = None,
    execution_id: Optional[str] = None,
    settings: SyncSettings = None
) -> SyncResult:
    """
    Convenience function to run one incremental sync.
    
    Args:
        since: Optional lower time bound override (strict ISO 8601 UTC)
        execution_id: Identifier of the trigger or schedule that started the run
        settings: Run settings; resolved from configuration when omitted
        
    Returns:
        SyncResult of the completed run
    """
    pipeline = SyncPipeline(settings or SyncSettings.from_config())
    try:
        return pipeline.run(since=since, execution_id=execution_id)
    finally:
        pipeline.close()
