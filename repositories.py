from abc import ABC, abstractmethod
from typing import Dict, List

from models import AccountState, FinalClientState


class AccountRepository(ABC):
    @abstractmethod
    def get_or_create_account(self, client_id: int) -> AccountState:
        """Get account state, creating a zeroed one on first reference."""
        pass

    @abstractmethod
    def get_accounts_count(self) -> int:
        """Get total number of accounts."""
        pass

    @abstractmethod
    def snapshot_all(self) -> List[FinalClientState]:
        """Freeze every account into its final state."""
        pass


class InMemoryAccountRepository(AccountRepository):
    """Account map private to a single lane; never shared, so never locked."""

    def __init__(self):
        self.accounts: Dict[int, AccountState] = {}

    def get_or_create_account(self, client_id: int) -> AccountState:
        account = self.accounts.get(client_id)
        if account is None:
            account = AccountState.new(client_id)
            self.accounts[client_id] = account
        return account

    def get_accounts_count(self) -> int:
        return len(self.accounts)

    def snapshot_all(self) -> List[FinalClientState]:
        return [account.snapshot() for account in self.accounts.values()]


def get_account_repository() -> AccountRepository:
    return InMemoryAccountRepository()
