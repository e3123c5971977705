"""
Opportunity scanning and trade execution.
"""

from spotarb.engine.execution_engine import ExecutionEngine
from spotarb.engine.executor import TradeExecutor
from spotarb.engine.scanner import OpportunityScanner
from spotarb.engine.sizing import TradeAmountPolicy

__all__ = [
    "ExecutionEngine",
    "OpportunityScanner",
    "TradeAmountPolicy",
    "TradeExecutor",
]
