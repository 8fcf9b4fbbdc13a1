"""
Unit Tests for pagination strategies and the paginated fetcher
"""

import unittest
from unittest.mock import Mock

from jsm_sync.fetcher import IssueFetcher, build_since_jql, fetch_since
from jsm_sync.jira_client import JiraAPIError
from jsm_sync.pagination import CursorPagination, OffsetPagination, build_strategy
from jsm_sync.utils.helpers import ValidationError
from tests.factories import make_issue, offset_page

SINCE = '2025-03-05T11:00:00.000Z'


def issues(prefix, count):
    return [make_issue(key=f'{prefix}-{i}') for i in range(count)]


class TestOffsetPagination(unittest.TestCase):
    
    def test_three_pages_for_450_results(self):
        client = Mock()
        client.get.side_effect = [
            offset_page(issues('A', 200), start_at=0, total=450),
            offset_page(issues('B', 200), start_at=200, total=450),
            offset_page(issues('C', 50), start_at=400, total=450),
        ]
        
        rows = IssueFetcher(client).fetch_since(SINCE)
        
        self.assertEqual(len(rows), 450)
        self.assertEqual(client.get.call_count, 3)
        offsets = [call.kwargs['params']['startAt'] for call in client.get.call_args_list]
        self.assertEqual(offsets, [0, 200, 400])
        for call in client.get.call_args_list:
            self.assertEqual(call.args[0], '/rest/api/3/search')
            self.assertEqual(call.kwargs['params']['maxResults'], 200)
    
    def test_next_offset_uses_declared_page_size(self):
        client = Mock()
        # Server caps the page at 100 even though 200 was requested
        client.get.side_effect = [
            offset_page(issues('A', 100), start_at=0, max_results=100, total=150),
            offset_page(issues('B', 50), start_at=100, max_results=100, total=150),
        ]
        
        IssueFetcher(client).fetch_since(SINCE)
        
        offsets = [call.kwargs['params']['startAt'] for call in client.get.call_args_list]
        self.assertEqual(offsets, [0, 100])
    
    def test_empty_result_single_request(self):
        client = Mock()
        client.get.return_value = offset_page([], total=0)
        
        self.assertEqual(IssueFetcher(client).fetch_since(SINCE), [])
        self.assertEqual(client.get.call_count, 1)
    
    def test_zero_page_size_stops(self):
        client = Mock()
        client.get.return_value = {'startAt': 0, 'maxResults': 0, 'total': 10, 'issues': []}
        
        strategy = OffsetPagination('updated >= "x"', ['summary'])
        page, state = strategy.next_page(client, strategy.initial_state())
        
        self.assertEqual(page, [])
        self.assertIsNone(state)


class TestCursorPagination(unittest.TestCase):
    
    def test_follows_tokens_until_absent(self):
        client = Mock()
        client.get.side_effect = [
            {'issues': issues('A', 2), 'nextPageToken': 'tok-1'},
            {'issues': issues('B', 1)},
        ]
        
        rows = IssueFetcher(client, pagination='cursor').fetch_since(SINCE)
        
        self.assertEqual([row['key'] for row in rows], ['A-0', 'A-1', 'B-0'])
        first, second = client.get.call_args_list
        self.assertEqual(first.args[0], '/rest/api/3/search/jql')
        self.assertNotIn('nextPageToken', first.kwargs['params'])
        self.assertEqual(second.kwargs['params']['nextPageToken'], 'tok-1')
        self.assertNotIn('startAt', second.kwargs['params'])
    
    def test_page_cap(self):
        client = Mock()
        client.get.return_value = {'issues': issues('A', 1), 'nextPageToken': 'again'}
        
        strategy = CursorPagination('updated >= "x"', ['summary'], max_pages=3)
        state = strategy.initial_state()
        calls = 0
        while state is not None:
            _, state = strategy.next_page(client, state)
            calls += 1
        
        self.assertEqual(calls, 3)
    
    def test_unknown_strategy(self):
        with self.assertRaises(ValueError):
            build_strategy('keyset', 'jql', ['summary'])


class TestIssueFetcher(unittest.TestCase):
    
    def test_jql_is_ascending_by_updated(self):
        self.assertEqual(
            build_since_jql(SINCE),
            'updated >= "2025-03-05T11:00:00.000Z" order by updated asc'
        )
    
    def test_invalid_since_fails_before_any_request(self):
        client = Mock()
        with self.assertRaises(ValidationError):
            IssueFetcher(client).fetch_since('2025-1-1T00:00:00Z')
        with self.assertRaises(ValidationError):
            IssueFetcher(client).fetch_since('2025-01-01T00:00:00Z" OR project = X')
        client.get.assert_not_called()
    
    def test_issues_without_key_are_dropped(self):
        client = Mock()
        client.get.return_value = offset_page([make_issue(key='SUP-1'), make_issue(key=None), {'fields': {}}])
        
        rows = IssueFetcher(client).fetch_since(SINCE)
        
        self.assertEqual([row['key'] for row in rows], ['SUP-1'])
    
    def test_transport_error_discards_partial_results(self):
        client = Mock()
        client.get.side_effect = [
            offset_page(issues('A', 200), start_at=0, total=450),
            JiraAPIError('Jira 502: Bad Gateway', 502, 'Bad Gateway'),
        ]
        
        with self.assertRaises(JiraAPIError) as ctx:
            IssueFetcher(client).fetch_since(SINCE)
        
        self.assertEqual(ctx.exception.status_code, 502)
        self.assertEqual(ctx.exception.body, 'Bad Gateway')
    
    def test_requests_configured_fields(self):
        client = Mock()
        client.get.return_value = offset_page([])
        
        IssueFetcher(client).fetch_since(SINCE)
        
        fields = client.get.call_args.kwargs['params']['fields'].split(',')
        self.assertIn('customfield_10061', fields)
        self.assertIn('resolutiondate', fields)
    
    def test_fetch_since_function(self):
        client = Mock()
        client.get.return_value = {'issues': [make_issue('SUP-3')]}
        
        rows = fetch_since(client, SINCE, pagination='cursor')
        
        self.assertEqual([row['key'] for row in rows], ['SUP-3'])


if __name__ == '__main__':
    unittest.main()
