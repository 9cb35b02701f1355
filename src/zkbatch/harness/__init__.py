"""
Scenario harness.

End-to-end authorization scenarios against a Verification Oracle.
"""

from zkbatch.harness.tester import BatchTester, ScenarioFailed, Tester, funded_wallet

__all__ = [
    "BatchTester",
    "ScenarioFailed",
    "Tester",
    "funded_wallet",
]
