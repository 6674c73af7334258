from .adapter import STATUS_SUCCESS, AccountBalance, LedgerBackend, LedgerTransaction, make_backend

__all__ = ["STATUS_SUCCESS", "AccountBalance", "LedgerBackend", "LedgerTransaction", "make_backend"]
