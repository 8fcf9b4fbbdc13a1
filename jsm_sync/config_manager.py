"""
Configuration Manager Module
Handles loading and accessing configuration from YAML files and environment variables.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv

from jsm_sync.utils.helpers import (
    ValidationError, validate_identifier, validate_location, validate_since
)

DEFAULT_DATASET = 'sre'
DEFAULT_TARGET_TABLE = 'jsm_tickets'
DEFAULT_STAGING_TABLE = 'jsm_tickets_staging'
DEFAULT_LOCATION = 'EU'
DEFAULT_LOOKBACK_MINUTES = 60
DEFAULT_PAGE_SIZE = 200


class ConfigManager:
    """Manages application configuration from YAML files and environment variables."""
    
    _instance = None
    _config: Dict = None
    
    def __new__(cls):
        """Singleton pattern for configuration."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance
    
    def __init__(self):
        """Initialize configuration if not already loaded."""
        if self._config is None:
            self._load_configuration()
    
    def _load_configuration(self) -> None:
        """Load the configuration file."""
        # Load environment variables from .env file
        load_dotenv()
        
        config_dir = self._find_config_dir()
        if config_dir is None:
            # Environment-only deployments (container jobs) ship no YAML file
            self._config = {}
            return
        
        self._config = self._load_yaml_with_env(config_dir / 'config.yaml')
    
    def _find_config_dir(self) -> Optional[Path]:
        """Find the configuration directory."""
        env_config_dir = os.getenv('CONFIG_DIR')
        if env_config_dir:
            return Path(env_config_dir)
        
        possible_paths = [
            Path(__file__).parent.parent / 'config',  # Relative to jsm_sync/
            Path.cwd() / 'config',  # Current working directory
            Path('/app/config'),  # Docker container
        ]
        
        for path in possible_paths:
            if path.exists():
                return path
        
        return None
    
    def _load_yaml_with_env(self, file_path: Path) -> Dict:
        """
        Load YAML file with environment variable substitution.
        
        Supports ${VAR_NAME} and ${VAR_NAME:-default} syntax.
        """
        if not file_path.exists():
            return {}
        
        with open(file_path, 'r', encoding='utf-8') as f:
            content = f.read()
        
        content = self._substitute_env_vars(content)
        
        return yaml.safe_load(content) or {}
    
    def _substitute_env_vars(self, content: str) -> str:
        """
        Substitute environment variables in string.
        
        Supports:
        - ${VAR_NAME} - Required variable
        - ${VAR_NAME:-default} - Variable with default value
        """
        pattern = r'\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}'
        
        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2)
            
            value = os.getenv(var_name)
            if value is not None:
                return value
            elif default_value is not None:
                return default_value
            else:
                return match.group(0)  # Return original if not found
        
        return re.sub(pattern, replacer, content)
    
    # ========================================
    # Configuration Getters
    # ========================================
    
    def get_jira_config(self) -> Dict:
        """Get Jira API configuration."""
        return self._config.get('jira') or {}
    
    def get_warehouse_config(self) -> Dict:
        """Get warehouse configuration."""
        return self._config.get('warehouse') or {}
    
    def get_sync_config(self) -> Dict:
        """Get sync run configuration."""
        return self._config.get('sync') or {}
    
    def get_trigger_config(self) -> Dict:
        """Get trigger endpoint configuration."""
        return self._config.get('trigger') or {}
    
    def get_logging_config(self) -> Dict:
        """Get logging configuration."""
        return self._config.get('logging') or {}
    
    def get_scheduler_config(self) -> Dict:
        """Get scheduler configuration."""
        return self._config.get('scheduler') or {}
    
    def reload(self) -> None:
        """Reload configuration from files."""
        self._config = None
        self._load_configuration()


def _unresolved(value) -> bool:
    """True for empty values and ${VAR} placeholders left by substitution."""
    if value is None:
        return True
    text = str(value).strip()
    return not text or text.startswith('${')


def _clean(value, default=None):
    return default if _unresolved(value) else value


@dataclass(frozen=True)
class SyncSettings:
    """
    Run parameters resolved once per process.
    
    Built from the configuration sections and passed by reference into the
    orchestrator, the trigger endpoint and the scheduler.
    """
    jira_url: str
    jira_username: str
    jira_api_token: str
    project: str
    dataset: str = DEFAULT_DATASET
    target_table: str = DEFAULT_TARGET_TABLE
    staging_table: str = DEFAULT_STAGING_TABLE
    location: str = DEFAULT_LOCATION
    since: Optional[str] = None
    lookback_minutes: int = DEFAULT_LOOKBACK_MINUTES
    page_size: int = DEFAULT_PAGE_SIZE
    pagination: str = 'offset'
    max_pages: Optional[int] = None
    requests_per_second: float = 5
    max_retries: int = 3
    retry_delay: float = 1
    timeout: float = 30
    warehouse_url: Optional[str] = None
    warehouse_options: Dict = field(default_factory=dict)
    trigger_secret: Optional[str] = None
    job_name: str = 'jsm-puller'
    
    @classmethod
    def from_config(cls, config: ConfigManager = None) -> 'SyncSettings':
        """Resolve settings from the configuration manager."""
        config = config or ConfigManager()
        jira = config.get_jira_config()
        warehouse = config.get_warehouse_config()
        sync = config.get_sync_config()
        trigger = config.get_trigger_config()
        
        options = {
            name: warehouse[name]
            for name in ('host', 'port', 'user', 'password',
                         'pool_size', 'max_overflow', 'pool_timeout')
            if not _unresolved(warehouse.get(name))
        }
        
        max_pages = _clean(jira.get('max_pages'))
        
        return cls(
            jira_url=str(_clean(jira.get('url'), '')).rstrip('/'),
            jira_username=_clean(jira.get('username'), ''),
            jira_api_token=_clean(jira.get('api_token'), ''),
            project=_clean(warehouse.get('project'), ''),
            dataset=_clean(warehouse.get('dataset'), DEFAULT_DATASET),
            target_table=_clean(warehouse.get('target_table'), DEFAULT_TARGET_TABLE),
            staging_table=_clean(warehouse.get('staging_table'), DEFAULT_STAGING_TABLE),
            location=_clean(warehouse.get('location'), DEFAULT_LOCATION),
            since=_clean(sync.get('since')),
            lookback_minutes=int(_clean(sync.get('lookback_minutes'), DEFAULT_LOOKBACK_MINUTES)),
            page_size=int(_clean(jira.get('page_size'), DEFAULT_PAGE_SIZE)),
            pagination=_clean(jira.get('pagination'), 'offset'),
            max_pages=int(max_pages) if max_pages is not None else None,
            requests_per_second=float(_clean(jira.get('requests_per_second'), 5)),
            max_retries=int(_clean(jira.get('max_retries'), 3)),
            retry_delay=float(_clean(jira.get('retry_delay'), 1)),
            timeout=float(_clean(jira.get('timeout'), 30)),
            warehouse_url=_clean(warehouse.get('url')),
            warehouse_options=options,
            trigger_secret=_clean(trigger.get('secret')),
            job_name=_clean(trigger.get('job'), 'jsm-puller'),
        )
    
    def validate(self) -> 'SyncSettings':
        """
        Validate every value that reaches a query expression or SQL identifier.
        
        Raises:
            ValidationError: On the first invalid value
        """
        if not self.project:
            raise ValidationError("Warehouse project is required")
        validate_identifier(self.project, 'project')
        validate_identifier(self.dataset, 'dataset')
        validate_identifier(self.target_table, 'target_table')
        validate_identifier(self.staging_table, 'staging_table')
        validate_location(self.location)
        if self.since:
            validate_since(self.since)
        if self.pagination not in ('offset', 'cursor'):
            raise ValidationError(f"Unknown pagination strategy: {self.pagination!r}")
        if self.page_size <= 0:
            raise ValidationError(f"Page size must be positive, got {self.page_size}")
        return self
