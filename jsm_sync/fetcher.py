"""
Paginated Fetcher
Pulls every issue updated since a lower bound and returns normalized rows.
"""

from typing import Dict, List, Optional, Sequence

from jsm_sync.jira_client import ISSUE_FIELDS, JiraClient
from jsm_sync.normalizer import normalize
from jsm_sync.pagination import PaginationStrategy, build_strategy
from jsm_sync.utils.helpers import validate_since
from jsm_sync.utils.logger import get_logger

logger = get_logger(__name__)


def build_since_jql(since: str) -> str:
    """
    JQL for issues updated at or after ``since``, oldest first.
    
    Ascending order lets an interrupted run be covered by the next run's
    lookback window without a resume cursor.
    """
    validate_since(since)
    return f'updated >= "{since}" order by updated asc'


class IssueFetcher:
    """
    Drives one pagination strategy to the end and normalizes the results.
    """
    
    def __init__(
        self,
        client: JiraClient,
        pagination: str = 'offset',
        page_size: int = 200,
        max_pages: Optional[int] = None,
        fields: Sequence[str] = None
    ):
        self.client = client
        self.pagination = pagination
        self.page_size = page_size
        self.max_pages = max_pages
        self.fields = list(fields or ISSUE_FIELDS)
    
    def strategy_for(self, since: str) -> PaginationStrategy:
        return build_strategy(
            self.pagination,
            build_since_jql(since),
            self.fields,
            page_size=self.page_size,
            max_pages=self.max_pages,
        )
    
    def fetch_since(self, since: str) -> List[Dict]:
        """
        Fetch and normalize all issues updated since ``since``.
        
        Args:
            since: Strict ISO 8601 UTC timestamp
            
        Returns:
            Normalized records in source order; records without a key are dropped
            
        Raises:
            ValidationError: If ``since`` is malformed (before any request)
            JiraAPIError: If any page request fails; nothing is returned then
        """
        strategy = self.strategy_for(since)
        logger.info(f"Fetching issues with JQL: {strategy.jql} ({self.pagination} pagination)")
        
        rows: List[Dict] = []
        skipped = 0
        pages = 0
        state = strategy.initial_state()
        
        while state is not None:
            issues, state = strategy.next_page(self.client, state)
            pages += 1
            
            for issue in issues:
                record = normalize(issue)
                if record['key']:
                    rows.append(record)
                else:
                    skipped += 1
        
        if skipped:
            logger.info(f"Skipped {skipped} issues without a key")
        logger.info(f"Fetched {len(rows)} issues in {pages} pages")
        
        return rows


def fetch_since(client: JiraClient, since: str, pagination: str = 'offset', page_size: int = 200) -> List[Dict]:
    """Convenience wrapper around IssueFetcher.fetch_since."""
    return IssueFetcher(client, pagination=pagination, page_size=page_size).fetch_since(since)
