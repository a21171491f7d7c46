"""
Client ledger and balances.
"""
