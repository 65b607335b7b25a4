"""
Loan Servicing Core

Automated loan status derivation and collection reconciliation for a
loan-servicing back office: per-loan-cycle collection ledger, duplicate-free
imports from legacy and parsed sources, and non-destructive write-back.
"""

__version__ = "1.0.0"
