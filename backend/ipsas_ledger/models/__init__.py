from ipsas_ledger.models.fund import Fund
from ipsas_ledger.models.gl import Account, GLEntry, GLTransaction
from ipsas_ledger.models.org import Entity

__all__ = [
    # Organizational structure
    "Entity",
    "Fund",
    # General Ledger
    "Account",
    "GLTransaction",
    "GLEntry",
]
