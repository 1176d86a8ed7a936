"""Ledger, odds, betting, payment and notification services."""
