#!/usr/bin/env python
"""
Warehouse Initialization Script
Creates the dataset schema, target and staging tables and the run log.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from jsm_sync.config_manager import SyncSettings
from jsm_sync.database.connection import Warehouse
from jsm_sync.utils.helpers import ValidationError
from jsm_sync.utils.logger import setup_logging, get_logger


def main():
    setup_logging()
    logger = get_logger(__name__)
    
    try:
        settings = SyncSettings.from_config().validate()
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)
    
    warehouse = Warehouse.from_settings(settings)
    if not warehouse.check_connection():
        logger.error("Cannot connect to the warehouse")
        sys.exit(1)
    
    try:
        warehouse.create_tables()
    finally:
        warehouse.dispose()
    
    print(f"Created {settings.dataset}.{settings.target_table}, "
          f"{settings.dataset}.{settings.staging_table} and {settings.dataset}.sync_runs")


if __name__ == '__main__':
    main()
