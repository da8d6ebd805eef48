"""
Service wiring for the API
"""

from typing import Optional

from ..config import get_config
from ..loans import LoanManager
from ..storage import StorageInterface, create_storage


class LendingSystem:
    """Storage and loan services shared by all requests"""

    def __init__(self, storage: Optional[StorageInterface] = None):
        if storage is None:
            config = get_config()
            storage = create_storage(config.storage_backend, config.database_path)
        self.storage = storage
        self.loan_manager = LoanManager(self.storage)


_lending_system: Optional[LendingSystem] = None


def get_lending_system() -> LendingSystem:
    """Dependency returning the process-wide lending system, built on first use"""
    global _lending_system
    if _lending_system is None:
        _lending_system = LendingSystem()
    return _lending_system
