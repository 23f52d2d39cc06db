"""User and wallet directory backed by the users/wallet_connections tables."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from usdc_flow_tracker.chain.models import Network, WalletRef, canonical_address
from usdc_flow_tracker.storage.database import DatabaseManager
from usdc_flow_tracker.storage.repos import (
    UserRepository,
    WalletConnectionDTO,
    WalletConnectionRepository,
)

logger = logging.getLogger(__name__)


class WalletDirectory(Protocol):
    """Source of users and their active wallets."""

    async def list_user_ids(self) -> list[str]: ...

    async def list_active_wallets(self, user_id: str) -> list[WalletRef]: ...

    async def touch_last_active(self, user_id: str) -> None: ...


class SqlWalletDirectory:
    """WalletDirectory over the relational store."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def list_user_ids(self) -> list[str]:
        async with self._db.get_async_session() as session:
            return await UserRepository(session).list_ids()

    async def list_active_wallets(self, user_id: str) -> list[WalletRef]:
        async with self._db.get_async_session() as session:
            connections = await WalletConnectionRepository(session).list_active(user_id)
        return [WalletRef(address=c.wallet_address, network=c.network) for c in connections]

    async def touch_last_active(self, user_id: str, *, at: datetime | None = None) -> None:
        async with self._db.get_async_session() as session:
            found = await UserRepository(session).touch_last_active(user_id, at=at)
        if not found:
            logger.debug("touch_last_active: unknown user %s", user_id[:8])

    async def add_wallet(self, user_id: str, address: str, network: Network) -> WalletRef:
        """Register an active wallet for a user, creating the user if needed."""
        ref = WalletRef(address=canonical_address(address, network), network=network)
        async with self._db.get_async_session() as session:
            await UserRepository(session).ensure(user_id)
            await WalletConnectionRepository(session).upsert(
                WalletConnectionDTO(
                    user_id=user_id,
                    wallet_address=ref.address,
                    network=network,
                    is_active=True,
                )
            )
        logger.info("Registered %s wallet %s for user %s", network.value, ref.address[:10], user_id[:8])
        return ref

    async def remove_wallet(self, user_id: str, address: str, network: Network) -> bool:
        async with self._db.get_async_session() as session:
            return await WalletConnectionRepository(session).deactivate(
                user_id, canonical_address(address, network), network
            )
