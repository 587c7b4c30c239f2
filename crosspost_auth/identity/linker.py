"""
Wallet to social-account identity index.

Maintains two records per wallet:

- wallet-index/{wallet_id} -> [LinkedAccount, ...]   ordered, unique per (platform, user_id)
- wallet-auth/{wallet_id}  -> WalletAuthorization

Index updates are optimistic: read, mutate, compare_and_set, retry on
conflict. Two handlers linking accounts to the same wallet concurrently
both land; neither update is lost.

authorization_status() is the single signal the HTTP layer uses:
    -1  wallet has not authorized
     0  authorized, nothing linked
     N  authorized with N linked accounts
"""

import logging
from typing import Callable, List, Optional

from pydantic import ValidationError

from crosspost_auth.credentials.vault import TokenVault
from crosspost_auth.identity.models import LinkedAccount, UnlinkResult, WalletAuthorization
from crosspost_auth.platform.errors import StoreUnavailableError, UnauthorizedError
from crosspost_auth.storage.kv import KeyedStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5

NOT_AUTHORIZED = -1


class IdentityLinker:
    """Links wallet identities to platform accounts."""

    def __init__(
        self,
        index_store: KeyedStore,
        auth_store: KeyedStore,
        vault: TokenVault,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        """
        Args:
            index_store: Store scoped to the wallet-index namespace
            auth_store: Store scoped to the wallet-auth namespace
            vault: Token vault, used by unlink to drop the credential
            max_attempts: compare_and_set attempts before giving up
        """
        self._index = index_store
        self._auth = auth_store
        self._vault = vault
        self._max_attempts = max_attempts

    @staticmethod
    def _parse_accounts(raw) -> List[LinkedAccount]:
        if not isinstance(raw, list):
            return []
        accounts = []
        for item in raw:
            try:
                accounts.append(LinkedAccount.model_validate(item))
            except ValidationError:
                logger.warning("Dropping malformed wallet index entry")
        return accounts

    async def _update_index(
        self,
        wallet_id: str,
        mutate: Callable[[List[LinkedAccount]], Optional[List[LinkedAccount]]],
    ) -> List[LinkedAccount]:
        """
        Apply mutate to the wallet's account list with compare_and_set.

        mutate returns the new list, or None when no write is needed.

        Raises:
            StoreUnavailableError: Contention outlasted max_attempts
        """
        for attempt in range(1, self._max_attempts + 1):
            current = await self._index.get(wallet_id)
            accounts = self._parse_accounts(current)
            updated = mutate(accounts)
            if updated is None:
                return accounts

            payload = [account.model_dump(mode="json") for account in updated]
            if await self._index.compare_and_set(wallet_id, current, payload):
                return updated

            logger.debug(
                "Wallet index changed during update, retrying",
                extra={"wallet_id": wallet_id, "attempt": attempt},
            )

        logger.warning(
            "Wallet index update abandoned after repeated conflicts",
            extra={"wallet_id": wallet_id, "attempts": self._max_attempts},
        )
        raise StoreUnavailableError(
            "Wallet index is being modified concurrently",
            details={"wallet_id": wallet_id, "attempts": self._max_attempts},
        )

    async def link(self, wallet_id: str, platform: str, user_id: str) -> None:
        """Bind (platform, user_id) to wallet_id. No-op if already linked."""

        def add(accounts: List[LinkedAccount]) -> Optional[List[LinkedAccount]]:
            if any(account.matches(platform, user_id) for account in accounts):
                return None
            return accounts + [LinkedAccount(platform=platform, user_id=user_id)]

        await self._update_index(wallet_id, add)
        logger.info("Account linked", extra={"wallet_id": wallet_id, "platform": platform})

    async def unlink(self, wallet_id: str, platform: str, user_id: str) -> UnlinkResult:
        """
        Remove the index entry and delete the stored credential.

        Both steps always run; each one's outcome is reported on the result.
        """
        result = UnlinkResult()

        def remove(accounts: List[LinkedAccount]) -> Optional[List[LinkedAccount]]:
            remaining = [a for a in accounts if not a.matches(platform, user_id)]
            return None if len(remaining) == len(accounts) else remaining

        try:
            await self._update_index(wallet_id, remove)
            result.index_removed = True
        except Exception as e:
            result.index_error = str(e)
            logger.warning(
                "Failed to remove wallet index entry",
                extra={"wallet_id": wallet_id, "platform": platform},
                exc_info=True,
            )

        try:
            await self._vault.delete(platform, user_id)
            result.credential_deleted = True
        except Exception as e:
            result.credential_error = str(e)
            logger.warning(
                "Failed to delete credential during unlink",
                extra={"wallet_id": wallet_id, "platform": platform},
                exc_info=True,
            )

        logger.info(
            "Account unlinked",
            extra={
                "wallet_id": wallet_id,
                "platform": platform,
                "index_removed": result.index_removed,
                "credential_deleted": result.credential_deleted,
            },
        )
        return result

    async def list_linked(self, wallet_id: str) -> List[LinkedAccount]:
        """Accounts linked to the wallet, oldest first. [] if none."""
        return self._parse_accounts(await self._index.get(wallet_id))

    async def has_access(self, wallet_id: str, platform: str, user_id: str) -> bool:
        accounts = await self.list_linked(wallet_id)
        return any(account.matches(platform, user_id) for account in accounts)

    async def authorize(self, wallet_id: str) -> None:
        record = WalletAuthorization(authorized=True)
        await self._auth.set(wallet_id, record.model_dump(mode="json"))
        logger.info("Wallet authorized", extra={"wallet_id": wallet_id})

    async def unauthorize(self, wallet_id: str) -> None:
        """Clear the authorization record. Succeeds if none exists."""
        await self._auth.delete(wallet_id)
        logger.info("Wallet unauthorized", extra={"wallet_id": wallet_id})

    async def is_authorized(self, wallet_id: str) -> bool:
        raw = await self._auth.get(wallet_id)
        if raw is None:
            return False
        try:
            return WalletAuthorization.model_validate(raw).authorized
        except ValidationError:
            logger.warning("Malformed wallet authorization record", extra={"wallet_id": wallet_id})
            return False

    async def authorization_status(self, wallet_id: str) -> int:
        """-1 if not authorized, otherwise the number of linked accounts."""
        if not await self.is_authorized(wallet_id):
            return NOT_AUTHORIZED
        return len(await self.list_linked(wallet_id))

    async def require_authorized(self, wallet_id: str) -> int:
        """
        Gate for every wallet-scoped request except authorize itself.

        Returns:
            Number of linked accounts

        Raises:
            UnauthorizedError: Wallet has not authorized
        """
        status = await self.authorization_status(wallet_id)
        if status == NOT_AUTHORIZED:
            raise UnauthorizedError(
                "Wallet has not authorized this application",
                details={"wallet_id": wallet_id},
            )
        return status
