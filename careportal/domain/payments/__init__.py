"""Payments domain - initiation, ledger transitions, refunds and reconciliation"""
