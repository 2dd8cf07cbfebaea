"""HTTP surface of the ledger bridge."""
