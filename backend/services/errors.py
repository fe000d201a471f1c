"""
Erreurs typées du moteur d'inventaire.

Toutes les vérifications (entrée, existence, statut) sont faites AVANT
toute mutation : une erreur levée ici signifie "rien n'a changé".
"""

from __future__ import annotations


class StockCountError(Exception):
    code = "stock_count_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidInput(StockCountError):
    code = "invalid_input"


class NotFound(StockCountError):
    code = "not_found"


class Conflict(StockCountError):
    code = "conflict"


class InvalidState(StockCountError):
    code = "invalid_state"


class LedgerError(StockCountError):
    """Le ledger a refusé un ajustement ; la validation entière est annulée."""

    code = "ledger_error"
