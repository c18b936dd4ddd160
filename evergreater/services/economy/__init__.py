"""Economy domain services: the resource ledger, the shared counter and
the passive-income aggregator.

Every account or counter mutation goes through a ``Ledger``. HTTP routes
and socket handlers never read-then-write account fields themselves.
"""

from .ledger import Ledger, SqlLedger, PrintResult, TickResult, generator_cost, get_ledger
from .memory import MemoryLedger

__all__ = [
    'Ledger',
    'SqlLedger',
    'MemoryLedger',
    'PrintResult',
    'TickResult',
    'generator_cost',
    'get_ledger',
]
