"""
Warehouse Table Definitions
Target and staging ticket tables, plus the sync run log.

Table names are configurable, so the ticket tables are built per warehouse.
The dataset is applied as the SQL schema through schema translation on the
engine; definitions here are schema-less.
"""

from datetime import datetime
from typing import Tuple

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Index, Integer, MetaData, String, Table, Text
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# NULL rather than JSON 'null' for unselected multi-select fields
StringList = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), 'postgresql')


def _ticket_columns():
    """Columns shared by target and staging (fresh objects per table)."""
    return [
        Column('summary', Text),
        Column('description', Text),
        Column('issue_type', String(255)),
        Column('status', String(255)),
        Column('priority', String(255)),
        Column('resolution', String(255)),
        # Source timestamps kept verbatim (ISO 8601 text)
        Column('created', String(64)),
        Column('updated', String(64)),
        Column('resolved', String(64)),
        Column('assignee', String(255)),
        Column('reporter', String(255)),
        Column('operational_categorization', Text),
        Column('linked_intercom_conversation_ids', Text),
        Column('team', StringList),
        Column('filiale', StringList),
        Column('start_date', String(10)),  # YYYY-MM-DD
        Column('ttr_raw_json', Text),
        Column('tffr_raw_json', Text),
        Column('sla_breached', Boolean),
        Column('last_sync', DateTime(timezone=True)),
    ]


def build_ticket_tables(
    metadata: MetaData,
    target_name: str = 'jsm_tickets',
    staging_name: str = 'jsm_tickets_staging'
) -> Tuple[Table, Table]:
    """
    Define the target and staging tables on ``metadata``.
    
    Returns:
        (target, staging)
    """
    target = Table(
        target_name,
        metadata,
        Column('key', String(64), primary_key=True),
        *_ticket_columns(),
        Index(f'ix_{target_name}_updated', 'updated'),
    )
    
    # Staging may hold the same key more than once when runs overlap; the
    # highest staging_id per key is the one merged.
    staging = Table(
        staging_name,
        metadata,
        Column('staging_id', Integer, primary_key=True, autoincrement=True),
        Column('key', String(64), nullable=False),
        *_ticket_columns(),
        Index(f'ix_{staging_name}_key', 'key'),
    )
    
    return target, staging


class SyncRun(Base):
    """Sync run tracking model."""
    __tablename__ = 'sync_runs'
    
    id = Column(Integer, primary_key=True)
    execution_id = Column(String(255), index=True)
    status = Column(String(50), nullable=False, default='running')  # 'running', 'completed', 'failed'
    since = Column(String(64))
    started_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime(timezone=True))
    records_fetched = Column(Integer, default=0)
    records_loaded = Column(Integer, default=0)
    records_updated = Column(Integer, default=0)
    records_inserted = Column(Integer, default=0)
    merged = Column(Boolean, default=False)
    error_message = Column(Text)
    
    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'execution_id': self.execution_id,
            'status': self.status,
            'since': self.since,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'records_fetched': self.records_fetched,
            'records_loaded': self.records_loaded,
            'records_updated': self.records_updated,
            'records_inserted': self.records_inserted,
            'merged': self.merged,
            'error_message': self.error_message,
        }
