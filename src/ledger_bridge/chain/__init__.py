"""Ledger access: wire codec, signatures, JSON-RPC and order event decoding."""
