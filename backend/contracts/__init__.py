"""Contracts package: the land-survey contract register.

Models, numbering and lifecycle rules, the key-value persistence gateway and
the :class:`ContractStore` that ties them together.
"""

from .models import (  # noqa: F401
    AppData,
    Contract,
    ContractStatus,
    Liquidation,
    LiquidationType,
    Role,
    User,
    Ward,
)
from .storage import JsonFileStore, MemoryStore  # noqa: F401
from .store import Backup, ContractStore, StorePolicy  # noqa: F401
