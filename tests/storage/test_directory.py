"""Tests for the SQL wallet directory."""

import pytest

from usdc_flow_tracker.chain.models import Network, WalletRef, canonical_address
from usdc_flow_tracker.storage.database import DatabaseManager
from usdc_flow_tracker.storage.directory import SqlWalletDirectory
from usdc_flow_tracker.storage.repos import UserRepository

EVM_WALLET = "0x742D35Cc6634C0532925a3b844Bc9e7595f5eAe2"
SOL_WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


@pytest.fixture
def directory(db_manager: DatabaseManager) -> SqlWalletDirectory:
    return SqlWalletDirectory(db_manager)


def test_canonical_address() -> None:
    assert canonical_address(EVM_WALLET, Network.POLYGON) == EVM_WALLET.lower()
    assert canonical_address(f" {SOL_WALLET} ", Network.SOLANA) == SOL_WALLET


class TestSqlWalletDirectory:
    @pytest.mark.asyncio
    async def test_add_and_list_wallets(self, directory: SqlWalletDirectory) -> None:
        await directory.add_wallet("user-1", EVM_WALLET, Network.POLYGON)
        await directory.add_wallet("user-1", SOL_WALLET, Network.SOLANA)

        assert await directory.list_user_ids() == ["user-1"]
        assert await directory.list_active_wallets("user-1") == [
            WalletRef(address=EVM_WALLET.lower(), network=Network.POLYGON),
            WalletRef(address=SOL_WALLET, network=Network.SOLANA),
        ]

    @pytest.mark.asyncio
    async def test_remove_and_readd(self, directory: SqlWalletDirectory) -> None:
        await directory.add_wallet("user-1", EVM_WALLET, Network.POLYGON)

        assert await directory.remove_wallet("user-1", EVM_WALLET, Network.POLYGON) is True
        assert await directory.list_active_wallets("user-1") == []

        await directory.add_wallet("user-1", EVM_WALLET, Network.POLYGON)
        assert len(await directory.list_active_wallets("user-1")) == 1

    @pytest.mark.asyncio
    async def test_touch_last_active(
        self, directory: SqlWalletDirectory, db_manager: DatabaseManager
    ) -> None:
        await directory.add_wallet("user-1", EVM_WALLET, Network.POLYGON)

        await directory.touch_last_active("user-1")
        await directory.touch_last_active("unknown-user")

        async with db_manager.get_async_session() as session:
            user = await UserRepository(session).get("user-1")
        assert user.last_active is not None
