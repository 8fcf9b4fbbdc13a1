"""
Integration Tests for staging load and merge against an in-memory warehouse
"""

import unittest
from datetime import datetime
from unittest.mock import Mock

import pytz

from jsm_sync.database.merge import Reconciler
from jsm_sync.database.staging import StagingLoader
from jsm_sync.normalizer import normalize
from tests.factories import FIXED_NOW, fixed_clock, make_issue, make_warehouse, target_rows


def record(key='SUP-1', summary='Card declined', **fields):
    return normalize(make_issue(key=key, summary=summary, **fields))


class TestStagingLoader(unittest.TestCase):
    
    def setUp(self):
        self.warehouse = make_warehouse()
        self.loader = StagingLoader(self.warehouse)
    
    def test_empty_batch_is_noop(self):
        warehouse = Mock()
        
        self.assertEqual(StagingLoader(warehouse).load([]), 0)
        warehouse.engine.begin.assert_not_called()
    
    def test_appends_whole_batch(self):
        count = self.loader.load([record('SUP-1'), record('SUP-2')])
        
        self.assertEqual(count, 2)
        self.assertEqual(self.warehouse.count_rows(self.warehouse.staging), 2)
    
    def test_batches_are_additive(self):
        self.loader.load([record('SUP-1')])
        self.loader.load([record('SUP-1')])
        
        self.assertEqual(self.warehouse.count_rows(self.warehouse.staging), 2)
    
    def test_chunked_insert(self):
        loader = StagingLoader(self.warehouse, batch_size=2)
        
        self.assertEqual(loader.load([record(f'SUP-{i}') for i in range(5)]), 5)
        self.assertEqual(self.warehouse.count_rows(self.warehouse.staging), 5)


class TestReconciler(unittest.TestCase):
    
    def setUp(self):
        self.warehouse = make_warehouse()
        self.loader = StagingLoader(self.warehouse)
        self.reconciler = Reconciler(self.warehouse, clock=fixed_clock())
    
    def test_inserts_new_keys_and_clears_staging(self):
        self.loader.load([record('SUP-1', customfield_10090=[{'value': 'Payments'}]), record('SUP-2')])
        
        result = self.reconciler.reconcile()
        
        self.assertEqual(result.inserted, 2)
        self.assertEqual(result.updated, 0)
        rows = target_rows(self.warehouse)
        self.assertEqual([row['key'] for row in rows], ['SUP-1', 'SUP-2'])
        self.assertEqual(rows[0]['team'], ['Payments'])
        self.assertIsNone(rows[1]['team'])
        self.assertIsNone(rows[0]['last_sync'])
        self.assertIsNone(rows[0]['sla_breached'])
        self.assertEqual(self.warehouse.count_rows(self.warehouse.staging), 0)
    
    def test_updates_matched_keys_and_stamps_last_sync(self):
        self.loader.load([record('SUP-1', summary='Old summary', customfield_10061={'value': 'Payments'})])
        self.reconciler.reconcile()
        
        self.loader.load([record('SUP-1', summary='New summary')])
        result = self.reconciler.reconcile()
        
        self.assertEqual(result.updated, 1)
        self.assertEqual(result.inserted, 0)
        rows = target_rows(self.warehouse)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['summary'], 'New summary')
        # Staging value overwrites, including nulls
        self.assertIsNone(rows[0]['operational_categorization'])
        self.assertEqual(rows[0]['last_sync'].replace(tzinfo=None), FIXED_NOW.replace(tzinfo=None))
    
    def test_empty_staging_still_clears_and_changes_nothing(self):
        self.loader.load([record('SUP-1')])
        self.reconciler.reconcile()
        before = target_rows(self.warehouse)
        
        result = self.reconciler.reconcile()
        
        self.assertEqual((result.updated, result.inserted), (0, 0))
        self.assertEqual(target_rows(self.warehouse), before)
        self.assertEqual(self.warehouse.count_rows(self.warehouse.staging), 0)
    
    def test_repeated_reconcile_is_idempotent(self):
        self.loader.load([record('SUP-1'), record('SUP-2')])
        
        self.reconciler.reconcile()
        count_after_first = self.warehouse.count_rows(self.warehouse.target)
        self.reconciler.reconcile()
        
        self.assertEqual(self.warehouse.count_rows(self.warehouse.target), count_after_first)
        self.assertEqual(self.warehouse.count_rows(self.warehouse.staging), 0)
    
    def test_duplicate_staged_keys_latest_wins(self):
        # Two overlapping runs staged the same key before either merged
        self.loader.load([record('SUP-1', summary='First run')])
        self.loader.load([record('SUP-1', summary='Second run')])
        
        result = self.reconciler.reconcile()
        
        self.assertEqual(result.inserted, 1)
        rows = target_rows(self.warehouse)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['summary'], 'Second run')
    
    def test_sla_breached_left_to_warehouse(self):
        self.loader.load([record('SUP-1')])
        self.reconciler.reconcile()
        with self.warehouse.engine.begin() as conn:
            conn.execute(self.warehouse.target.update().values(sla_breached=True))
        
        self.loader.load([record('SUP-1', summary='Changed')])
        self.reconciler.reconcile()
        
        self.assertTrue(target_rows(self.warehouse)[0]['sla_breached'])


class TestTwoRunUpsert(unittest.TestCase):
    
    def test_second_run_summary_wins(self):
        warehouse = make_warehouse()
        loader = StagingLoader(warehouse)
        
        first = Reconciler(warehouse, clock=fixed_clock(datetime(2025, 3, 5, 10, tzinfo=pytz.UTC)))
        loader.load([record('SUP-7', summary='Initial')])
        first.reconcile()
        
        second = Reconciler(warehouse, clock=fixed_clock(datetime(2025, 3, 5, 11, tzinfo=pytz.UTC)))
        loader.load([record('SUP-7', summary='Updated', updated='2025-03-05T10:45:00.000+0000')])
        second.reconcile()
        
        rows = target_rows(warehouse)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['summary'], 'Updated')
        self.assertEqual(rows[0]['updated'], '2025-03-05T10:45:00.000+0000')
        self.assertEqual(rows[0]['last_sync'].hour, 11)


if __name__ == '__main__':
    unittest.main()
