"""
Jira REST API Client Module
Handles communication with the Jira Service Management search API.
"""

import time
from typing import Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from jsm_sync.utils.logger import get_logger

logger = get_logger(__name__)

TRANSIENT_STATUSES = (429, 500, 502, 503, 504)

# Fields requested from the search endpoint; custom field ids belong to the
# service desk project this job reads.
ISSUE_FIELDS: List[str] = [
    'summary',
    'description',
    'issuetype',
    'status',
    'priority',
    'resolution',
    'created',
    'updated',
    'resolutiondate',
    'assignee',
    'reporter',
    'customfield_10061',  # Operational categorization (cascading)
    'customfield_10065',  # Linked Intercom conversation ids (string)
    'customfield_10090',  # Team (multi-select)
    'customfield_10083',  # Filiale (multi-select)
    'customfield_10015',  # Start date (date)
    'customfield_10055',  # TTR (SLA object)
    'customfield_10056',  # TFFR (SLA object)
]


class JiraAPIError(Exception):
    """Raised when the source API answers with a non-success status."""
    
    def __init__(self, message: str, status_code: int = None, body: str = None):
        self.message = message
        self.status_code = status_code
        self.body = body
        super().__init__(self.message)


class JiraClient:
    """
    Jira REST API client with retry on transient statuses and rate limiting.
    """
    
    def __init__(
        self,
        base_url: str,
        username: str,
        api_token: str,
        requests_per_second: float = 5,
        max_retries: int = 3,
        retry_delay: float = 1,
        timeout: float = 30,
        session: requests.Session = None
    ):
        self.base_url = (base_url or '').rstrip('/')
        self.username = username
        self.api_token = api_token
        
        self.requests_per_second = requests_per_second
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        
        self._last_request_time = 0.0
        self._session = session or self._create_session()
        
        logger.info(f"Jira client initialized for {self.base_url}")
    
    @classmethod
    def from_settings(cls, settings) -> 'JiraClient':
        """Build a client from resolved SyncSettings."""
        return cls(
            base_url=settings.jira_url,
            username=settings.jira_username,
            api_token=settings.jira_api_token,
            requests_per_second=settings.requests_per_second,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
            timeout=settings.timeout,
        )
    
    def _create_session(self) -> requests.Session:
        """Create requests session with retry logic."""
        session = requests.Session()
        
        session.auth = (self.username, self.api_token)
        session.headers.update({'Accept': 'application/json'})
        
        # Exponential backoff on transient statuses. raise_on_status=False hands
        # the last response back so the error carries its status and body.
        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=self.retry_delay,
            status_forcelist=list(TRANSIENT_STATUSES),
            allowed_methods=['GET'],
            respect_retry_after_header=True,
            raise_on_status=False
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount('https://', adapter)
        session.mount('http://', adapter)
        
        return session
    
    def _rate_limit(self) -> None:
        """Apply rate limiting between requests."""
        if not self.requests_per_second or self.requests_per_second <= 0:
            return
        
        min_interval = 1.0 / self.requests_per_second
        elapsed = time.time() - self._last_request_time
        
        if elapsed < min_interval:
            time.sleep(min_interval - elapsed)
        
        self._last_request_time = time.time()
    
    def get(self, path: str, params: Dict = None) -> Dict:
        """
        Issue a GET against the Jira REST API.
        
        Args:
            path: Path below the site root, e.g. /rest/api/3/search
            params: Query parameters
            
        Returns:
            Decoded JSON body
            
        Raises:
            JiraAPIError: On a non-success status or a transport failure
        """
        self._rate_limit()
        
        url = f"{self.base_url}/{path.lstrip('/')}"
        
        try:
            response = self._session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Request to {path} failed: {e}")
            raise JiraAPIError(f"Request failed: {e}") from e
        
        if not response.ok:
            body = response.text
            logger.error(f"Jira API request failed: status={response.status_code} path={path} body={body[:500]}")
            raise JiraAPIError(f"Jira {response.status_code}: {body}", response.status_code, body)
        
        if not response.text:
            return {}
        
        try:
            return response.json()
        except ValueError as e:
            raise JiraAPIError(
                f"Invalid JSON from {path}: {e}", response.status_code, response.text
            ) from e
    
    def close(self) -> None:
        self._session.close()
