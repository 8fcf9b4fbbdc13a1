"""
Unit Tests for the run orchestrator
"""

import unittest
from unittest.mock import Mock, patch

from sqlalchemy import select

from jsm_sync.database.models import SyncRun
from jsm_sync.jira_client import JiraAPIError
from jsm_sync.sync_pipeline import SyncError, SyncPipeline
from tests.factories import fixed_clock, make_issue, make_settings, make_warehouse, offset_page, target_rows


class TestResolveSince(unittest.TestCase):
    
    def test_default_is_one_hour_before_now(self):
        pipeline = SyncPipeline(make_settings(), client=Mock(), warehouse=Mock(), clock=fixed_clock())
        self.assertEqual(pipeline.resolve_since(), '2025-03-05T11:00:00.000Z')
    
    def test_configured_since_overrides_default(self):
        pipeline = SyncPipeline(make_settings(since='2025-01-01T00:00:00Z'), client=Mock(), warehouse=Mock())
        self.assertEqual(pipeline.resolve_since(), '2025-01-01T00:00:00Z')
    
    def test_explicit_since_wins(self):
        pipeline = SyncPipeline(make_settings(since='2025-01-01T00:00:00Z'), client=Mock(), warehouse=Mock())
        self.assertEqual(pipeline.resolve_since('2024-06-01T00:00:00.5Z'), '2024-06-01T00:00:00.5Z')
    
    def test_lookback_setting(self):
        pipeline = SyncPipeline(make_settings(lookback_minutes=1440), client=Mock(), warehouse=Mock(),
                                clock=fixed_clock())
        self.assertEqual(pipeline.resolve_since(), '2025-03-04T12:00:00.000Z')


class TestSyncPipeline(unittest.TestCase):
    
    def setUp(self):
        self.warehouse = make_warehouse()
        self.client = Mock()
    
    def pipeline(self, **overrides):
        return SyncPipeline(make_settings(**overrides), client=self.client,
                            warehouse=self.warehouse, clock=fixed_clock())
    
    def runs(self):
        with self.warehouse.session_scope() as session:
            return [run.to_dict() for run in session.execute(select(SyncRun)).scalars()]
    
    def test_full_run_merges(self):
        self.client.get.return_value = offset_page([make_issue('SUP-1'), make_issue('SUP-2')])
        
        result = self.pipeline().run(execution_id='jsm-puller-abc')
        
        self.assertEqual(result.status, 'completed')
        self.assertEqual((result.fetched, result.loaded), (2, 2))
        self.assertTrue(result.merged)
        self.assertEqual(result.merge.inserted, 2)
        self.assertEqual(len(target_rows(self.warehouse)), 2)
        self.assertEqual(self.warehouse.count_rows(self.warehouse.staging), 0)
        
        run, = self.runs()
        self.assertEqual(run['status'], 'completed')
        self.assertEqual(run['execution_id'], 'jsm-puller-abc')
        self.assertEqual(run['since'], '2025-03-05T11:00:00.000Z')
        self.assertEqual(run['records_inserted'], 2)
    
    def test_nothing_fetched_skips_merge(self):
        self.client.get.return_value = offset_page([])
        
        with patch('jsm_sync.sync_pipeline.Reconciler') as reconciler:
            result = self.pipeline().run()
        
        reconciler.assert_not_called()
        self.assertFalse(result.merged)
        self.assertEqual(result.loaded, 0)
        self.assertEqual(self.runs()[0]['status'], 'completed')
    
    def test_fetch_failure_is_fatal(self):
        self.client.get.side_effect = JiraAPIError('Jira 500: boom', 500, 'boom')
        
        with self.assertRaises(SyncError) as ctx:
            self.pipeline().run()
        
        self.assertEqual(ctx.exception.stage, 'fetch')
        self.assertIsInstance(ctx.exception.__cause__, JiraAPIError)
        self.assertEqual(self.warehouse.count_rows(self.warehouse.staging), 0)
        run, = self.runs()
        self.assertEqual(run['status'], 'failed')
        self.assertIn('boom', run['error_message'])
    
    def test_merge_failure_is_fatal(self):
        self.client.get.return_value = offset_page([make_issue('SUP-1')])
        
        with patch('jsm_sync.sync_pipeline.Reconciler') as reconciler:
            reconciler.return_value.reconcile.side_effect = RuntimeError('merge rejected')
            with self.assertRaises(SyncError) as ctx:
                self.pipeline().run()
        
        self.assertEqual(ctx.exception.stage, 'merge')
        self.assertEqual(self.runs()[0]['status'], 'failed')
    
    def test_invalid_since_fails_before_io(self):
        warehouse = Mock()
        pipeline = SyncPipeline(make_settings(), client=self.client, warehouse=warehouse)
        
        with self.assertRaises(SyncError) as ctx:
            pipeline.run(since='2025-1-1T00:00:00Z')
        
        self.assertEqual(ctx.exception.stage, 'config')
        self.client.get.assert_not_called()
        warehouse.session_scope.assert_not_called()
    
    def test_invalid_identifier_fails_before_io(self):
        pipeline = SyncPipeline(make_settings(dataset='sre; drop'), client=self.client, warehouse=Mock())
        
        with self.assertRaises(SyncError) as ctx:
            pipeline.run()
        
        self.assertEqual(ctx.exception.stage, 'config')
        self.client.get.assert_not_called()
    
    def test_two_runs_upsert_same_key(self):
        self.client.get.return_value = offset_page([make_issue('SUP-9', summary='First')])
        self.pipeline().run()
        
        self.client.get.return_value = offset_page([make_issue('SUP-9', summary='Second')])
        self.pipeline().run()
        
        rows = target_rows(self.warehouse)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['summary'], 'Second')


if __name__ == '__main__':
    unittest.main()
