"""
Execution Module
================
Exchange clients and order execution.
"""

from .execution_engine import ExchangeClient, MockExchange, ExecutionEngine, OrderResult

__all__ = ['ExchangeClient', 'MockExchange', 'ExecutionEngine', 'OrderResult']
