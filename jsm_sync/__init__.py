"""
Incremental sync of Jira Service Management tickets into an analytical warehouse.
"""

__version__ = '1.0.0'
