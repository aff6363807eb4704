"""Static registry of configured mailbox accounts."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from .config import AccountSettings, AppSettings
from .models import Account


class UnknownAccountError(KeyError):
    """Raised when an account identifier is not configured."""


class AccountRegistry:
    """Immutable lookup of accounts, loaded once at startup."""

    def __init__(self, accounts: Iterable[Account]) -> None:
        self._accounts: dict[str, Account] = {}
        for account in accounts:
            if account.id in self._accounts:
                raise ValueError(f"Duplicate account id '{account.id}'")
            self._accounts[account.id] = account

    @classmethod
    def from_settings(cls, settings: AppSettings) -> AccountRegistry:
        """Build a registry from the ``accounts`` section of the settings."""
        return cls(_to_account(entry) for entry in settings.accounts)

    def get(self, account_id: str) -> Account:
        try:
            return self._accounts[account_id]
        except KeyError:
            raise UnknownAccountError(account_id) from None

    def ids(self) -> tuple[str, ...]:
        return tuple(self._accounts)

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._accounts

    def __iter__(self) -> Iterator[Account]:
        return iter(tuple(self._accounts.values()))

    def __len__(self) -> int:
        return len(self._accounts)


def _to_account(entry: AccountSettings) -> Account:
    return Account(
        id=entry.id,
        host=entry.host,
        port=entry.port,
        user=entry.user,
        password=entry.password,
        use_ssl=entry.use_ssl,
    )


__all__ = ["AccountRegistry", "UnknownAccountError"]
