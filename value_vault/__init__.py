"""
Value Vault

A per-account value vault with a global capacity ceiling, a per-withdrawal
ceiling, hash-chained audit trail and checks-effects-interactions ordering
for every outbound transfer.
"""

__version__ = "1.0.0"
