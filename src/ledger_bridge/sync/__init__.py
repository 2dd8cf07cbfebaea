"""Keeping local order records consistent with the ledger."""
