"""Tests for the TronGrid TRC20 client."""

import json

import pytest

from usdc_flow_tracker.chain.tron import TronClientError, TronTransferClient

CONTRACT = "TXYZopYRdj2D9XRtbG411XZZ3kM5VkAeBf"
WALLET = "TNPeeaaFB7K9cmo4uQpcU32zGK8G1NYqeL"


def _entry(tx_id: str, contract: str = CONTRACT) -> dict:
    return {
        "transaction_id": tx_id,
        "from": "TSender",
        "to": WALLET,
        "value": "1000000",
        "block_timestamp": 1767225600000,
        "token_info": {"address": contract, "decimals": 6},
    }


class TestFetchTransfers:
    @pytest.mark.asyncio
    async def test_filters_to_watched_contract(self, make_session, make_response) -> None:
        session = make_session(
            make_response(
                body={
                    "success": True,
                    "data": [_entry("t1"), _entry("t2", contract="TOtherToken"), _entry("t3")],
                }
            )
        )
        client = TronTransferClient(
            "https://api.trongrid.example/",
            token_contract_address=CONTRACT,
            api_key="key",
            session=session,
        )

        transfers = await client.fetch_transfers(WALLET)

        assert [t.hash for t in transfers] == ["t1", "t3"]
        method, url, kwargs = session.calls[0]
        assert method == "GET"
        assert url == f"https://api.trongrid.example/v1/accounts/{WALLET}/transactions/trc20"
        assert kwargs["params"]["contract_address"] == CONTRACT
        assert kwargs["headers"]["TRON-PRO-API-KEY"] == "key"

    @pytest.mark.asyncio
    async def test_unsuccessful_body_raises(self, make_session, make_response) -> None:
        session = make_session(make_response(body={"success": False, "error": "bad address"}))
        client = TronTransferClient(
            "https://api.trongrid.example", token_contract_address=CONTRACT, session=session
        )

        with pytest.raises(TronClientError):
            await client.fetch_transfers(WALLET)

    @pytest.mark.asyncio
    async def test_http_status_raises(self, make_session, make_response) -> None:
        session = make_session(make_response(status=503, text="unavailable"))
        client = TronTransferClient(
            "https://api.trongrid.example", token_contract_address=CONTRACT, session=session
        )

        with pytest.raises(TronClientError, match="503"):
            await client.fetch_transfers(WALLET)

    @pytest.mark.asyncio
    async def test_undecodable_body_raises(self, make_session, make_response) -> None:
        session = make_session(
            make_response(json_error=json.JSONDecodeError("Expecting value", "<html>", 0))
        )
        client = TronTransferClient(
            "https://api.trongrid.example", token_contract_address=CONTRACT, session=session
        )

        with pytest.raises(TronClientError, match="undecodable"):
            await client.fetch_transfers(WALLET)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            [_entry("t1")],
            {"success": True, "data": {"transaction_id": "t1"}},
            {"success": True, "data": ["t1"]},
            {"success": True, "data": [{**_entry("t1"), "block_timestamp": 10**20}]},
        ],
    )
    async def test_malformed_body_raises(self, make_session, make_response, body) -> None:
        session = make_session(make_response(body=body))
        client = TronTransferClient(
            "https://api.trongrid.example", token_contract_address=CONTRACT, session=session
        )

        with pytest.raises(TronClientError):
            await client.fetch_transfers(WALLET)

    @pytest.mark.asyncio
    async def test_non_object_token_info_is_skipped(self, make_session, make_response) -> None:
        session = make_session(
            make_response(body={"success": True, "data": [{**_entry("t1"), "token_info": "x"}]})
        )
        client = TronTransferClient(
            "https://api.trongrid.example", token_contract_address=CONTRACT, session=session
        )

        assert await client.fetch_transfers(WALLET) == []


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_block_id_present(self, make_session, make_response) -> None:
        session = make_session(make_response(body={"blockID": "0000abc"}))
        client = TronTransferClient(
            "https://api.trongrid.example", token_contract_address=CONTRACT, session=session
        )
        assert await client.health_check() is True

    @pytest.mark.asyncio
    async def test_missing_block_id(self, make_session, make_response) -> None:
        session = make_session(make_response(body={}))
        client = TronTransferClient(
            "https://api.trongrid.example", token_contract_address=CONTRACT, session=session
        )
        assert await client.health_check() is False
