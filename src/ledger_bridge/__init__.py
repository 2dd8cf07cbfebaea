"""Ledger Bridge: order state between the local store and the ledger.

Keeps the operational order records consistent with the on-ledger order hub,
relays fee-sponsored transactions for the order lifecycle entry points, and
gates every privileged request with a replay-proof signed envelope.

Version Management
------------------
``__version__`` is read from the installed package metadata at import time.
The single source of truth is the ``version`` field in ``pyproject.toml``.
``api/server.py`` and the health route import ``__version__`` from here.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

# ---------------------------------------------------------------------------
# Package version, read from pyproject.toml via importlib.metadata.
#
# If the package is imported without being installed we fall back to the
# declared version so the application can still start.
# ---------------------------------------------------------------------------
try:
    __version__: str = version("ledger-bridge")
except PackageNotFoundError:
    __version__ = "0.1.0"
