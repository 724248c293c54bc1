"""
Store - keyed entity collections and the append-only audit ledger
"""
