"""
Pagination Strategies
Two ways of walking the Jira issue search: declared offset/total and
continuation tokens. A fetch uses exactly one strategy from start to end.
"""

from typing import Dict, List, Optional, Sequence, Tuple

from jsm_sync.jira_client import JiraClient
from jsm_sync.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_PAGES = 50


class PaginationStrategy:
    """
    Base class for search pagination.
    
    Subclasses implement ``next_page(client, state)`` which returns the issues
    of one page and the state for the following request, or None when the
    page was the last one.
    """
    
    path: str = ''
    
    def __init__(self, jql: str, fields: Sequence[str], page_size: int = 200):
        self.jql = jql
        self.fields = list(fields)
        self.page_size = page_size
    
    def initial_state(self) -> Dict:
        raise NotImplementedError
    
    def next_page(self, client: JiraClient, state: Dict) -> Tuple[List[Dict], Optional[Dict]]:
        raise NotImplementedError
    
    def _base_params(self) -> Dict:
        return {
            'jql': self.jql,
            'fields': ','.join(self.fields),
            'maxResults': self.page_size,
        }


class OffsetPagination(PaginationStrategy):
    """
    ``startAt``/``maxResults``/``total`` paging on /rest/api/3/search.
    
    The page is the last one when ``startAt + maxResults >= total`` using the
    values the response declares; the next offset is the declared offset plus
    the declared page size.
    """
    
    path = '/rest/api/3/search'
    
    def initial_state(self) -> Dict:
        return {'start_at': 0}
    
    def next_page(self, client: JiraClient, state: Dict) -> Tuple[List[Dict], Optional[Dict]]:
        params = self._base_params()
        params['startAt'] = state['start_at']
        
        data = client.get(self.path, params=params)
        issues = data.get('issues') or []
        
        start_at = data.get('startAt') or 0
        page_size = data.get('maxResults') or 0
        total = data.get('total') or 0
        
        logger.debug(f"Fetched page startAt={start_at} maxResults={page_size} total={total} issues={len(issues)}")
        
        if start_at + page_size >= total:
            return issues, None
        if page_size <= 0:
            logger.warning(f"Search declared an empty page size at startAt={start_at}, total={total}; stopping")
            return issues, None
        
        return issues, {'start_at': start_at + page_size}


class CursorPagination(PaginationStrategy):
    """
    ``nextPageToken`` paging on /rest/api/3/search/jql.
    
    Paging ends when the response carries no token or after ``max_pages``
    requests.
    """
    
    path = '/rest/api/3/search/jql'
    
    def __init__(
        self,
        jql: str,
        fields: Sequence[str],
        page_size: int = 200,
        max_pages: int = DEFAULT_MAX_PAGES
    ):
        super().__init__(jql, fields, page_size)
        self.max_pages = max_pages
    
    def initial_state(self) -> Dict:
        return {'token': None, 'pages': 0}
    
    def next_page(self, client: JiraClient, state: Dict) -> Tuple[List[Dict], Optional[Dict]]:
        params = self._base_params()
        if state.get('token'):
            params['nextPageToken'] = state['token']
        
        data = client.get(self.path, params=params)
        issues = data.get('issues') or []
        token = data.get('nextPageToken')
        pages = state.get('pages', 0) + 1
        
        logger.debug(f"Fetched page {pages} with {len(issues)} issues")
        
        if not token:
            return issues, None
        if self.max_pages and pages >= self.max_pages:
            logger.warning(f"Stopped after {pages} pages with a continuation token still pending")
            return issues, None
        
        return issues, {'token': token, 'pages': pages}


STRATEGIES = {
    'offset': OffsetPagination,
    'cursor': CursorPagination,
}


def build_strategy(
    name: str,
    jql: str,
    fields: Sequence[str],
    page_size: int = 200,
    max_pages: Optional[int] = None
) -> PaginationStrategy:
    """
    Create a pagination strategy by name ('offset' or 'cursor').
    """
    if name not in STRATEGIES:
        raise ValueError(f"Unknown pagination strategy: {name}")
    
    if name == 'cursor':
        return CursorPagination(jql, fields, page_size, max_pages or DEFAULT_MAX_PAGES)
    return OffsetPagination(jql, fields, page_size)
