"""
Ledger Module
=============
Virtual balances for shadow trading.
"""

from .virtual_ledger import VirtualLedger, VirtualBalance, split_pair

__all__ = ['VirtualLedger', 'VirtualBalance', 'split_pair']
