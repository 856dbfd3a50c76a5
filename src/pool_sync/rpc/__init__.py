from __future__ import annotations

from .client import EndpointClient, classify_error
from .ledger import LedgerReader
from .router import FailoverRouter

__all__ = ["EndpointClient", "FailoverRouter", "LedgerReader", "classify_error"]
