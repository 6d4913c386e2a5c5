"""Ledger access — contribution records on the KnowledgeBaseContributor contract."""

from ledgerkb.ledger.client import LedgerClient
from ledgerkb.ledger.models import Contribution

__all__ = ["Contribution", "LedgerClient"]
