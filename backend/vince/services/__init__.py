"""Attempt engine services: scoring, time ledger, attempt state machine,
prize pool and AI reply scheduling.

HTTP routes and socket handlers call into these modules; they never mutate
attempt or ledger rows themselves.
"""
