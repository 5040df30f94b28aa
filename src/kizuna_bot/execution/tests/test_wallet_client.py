"""
Tests for wallet adapters.

These tests verify:
- Relay payloads are built and parsed correctly
- Unknown relay statuses degrade to pending
- Input validation happens before any request is made
- DryRunWallet confirms immediately and tracks its balance
"""
from decimal import Decimal

import pytest

from kizuna_bot.errors import ErrorCode, KizunaError, ServiceError
from kizuna_bot.execution import DryRunWallet, TransactionResult, TxStatus, WalletRelayClient

RELAY_URL = "http://relay.local/"


# =============================================================================
# WalletRelayClient
# =============================================================================


class TestRelayTransfer:
    """Tests for WalletRelayClient.transfer()."""

    @pytest.mark.asyncio
    async def test_posts_transfer_and_parses_result(self, relay_session, relay_response):
        session = relay_session(
            relay_response(200, {"hash": "0xabc", "status": "confirmed", "blockNumber": "123"})
        )
        wallet = WalletRelayClient(RELAY_URL, token="secret", session=session)

        result = await wallet.transfer("0xseller", Decimal("0.3"), "eth")

        assert result == TransactionResult("0xabc", TxStatus.CONFIRMED, 123)
        assert result.confirmed is True

        args, kwargs = session.request.call_args
        assert args == ("POST", "http://relay.local/transfers")
        assert kwargs["json"] == {"to": "0xseller", "amount": "0.3", "token": "eth"}
        assert kwargs["headers"]["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_pending_status_is_not_confirmed(self, relay_session, relay_response):
        session = relay_session(relay_response(200, {"hash": "0xabc", "status": "pending"}))
        wallet = WalletRelayClient(RELAY_URL, session=session)

        result = await wallet.transfer("0xseller", Decimal("1"))

        assert result.status == TxStatus.PENDING
        assert result.confirmed is False
        assert result.block_number is None

    @pytest.mark.asyncio
    async def test_unknown_status_reads_as_pending(self, relay_session, relay_response):
        session = relay_session(relay_response(200, {"hash": "0xabc", "status": "mempool"}))
        wallet = WalletRelayClient(RELAY_URL, session=session)

        result = await wallet.transfer("0xseller", Decimal("1"))

        assert result.status == TxStatus.PENDING

    @pytest.mark.asyncio
    async def test_missing_hash_is_malformed(self, relay_session, relay_response):
        session = relay_session(relay_response(200, {"status": "confirmed"}))
        wallet = WalletRelayClient(RELAY_URL, session=session)

        with pytest.raises(ServiceError) as exc_info:
            await wallet.transfer("0xseller", Decimal("1"))

        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self, relay_session, relay_response):
        session = relay_session(relay_response(502, text="bad gateway"))
        wallet = WalletRelayClient(RELAY_URL, session=session)

        with pytest.raises(ServiceError) as exc_info:
            await wallet.transfer("0xseller", Decimal("1"))

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("destination,amount", [("", Decimal("1")), ("0xs", Decimal("0"))])
    async def test_validates_before_request(self, relay_session, destination, amount):
        session = relay_session()
        wallet = WalletRelayClient(RELAY_URL, session=session)

        with pytest.raises(KizunaError):
            await wallet.transfer(destination, amount)

        session.request.assert_not_called()


class TestRelayQueries:
    """Tests for status and balance lookups."""

    @pytest.mark.asyncio
    async def test_transaction_status(self, relay_session, relay_response):
        session = relay_session(relay_response(200, {"hash": "0xabc", "status": "FAILED"}))
        wallet = WalletRelayClient(RELAY_URL, session=session)

        assert await wallet.get_transaction_status("0xabc") == TxStatus.FAILED
        args, _ = session.request.call_args
        assert args == ("GET", "http://relay.local/transactions/0xabc")

    @pytest.mark.asyncio
    async def test_balance_learns_address(self, relay_session, relay_response):
        session = relay_session(relay_response(200, {"address": "0xme", "balance": "4.25"}))
        wallet = WalletRelayClient(RELAY_URL, session=session)

        assert await wallet.get_balance("eth") == Decimal("4.25")
        assert wallet.address == "0xme"
        _, kwargs = session.request.call_args
        assert kwargs["params"] == {"token": "eth"}

    @pytest.mark.asyncio
    async def test_configured_address_is_kept(self, relay_session, relay_response):
        session = relay_session(relay_response(200, {"address": "0xother", "balance": "1"}))
        wallet = WalletRelayClient(RELAY_URL, address="0xme", session=session)

        await wallet.get_balance()

        assert wallet.address == "0xme"

    @pytest.mark.asyncio
    async def test_bad_balance_value(self, relay_session, relay_response):
        session = relay_session(relay_response(200, {"balance": "lots"}))
        wallet = WalletRelayClient(RELAY_URL, session=session)

        with pytest.raises(ServiceError):
            await wallet.get_balance()


# =============================================================================
# DryRunWallet
# =============================================================================


class TestDryRunWallet:
    """Tests for the paper-trading wallet."""

    @pytest.mark.asyncio
    async def test_transfer_confirms_and_debits(self):
        wallet = DryRunWallet(balance=Decimal("1"))

        result = await wallet.transfer("0xseller", Decimal("0.3"), "eth")

        assert result.confirmed
        assert result.tx_hash.startswith("0x")
        assert await wallet.get_balance() == Decimal("0.7")
        assert await wallet.get_transaction_status(result.tx_hash) == TxStatus.CONFIRMED
        assert wallet.transfers[0]["to"] == "0xseller"

    @pytest.mark.asyncio
    async def test_insufficient_balance(self):
        wallet = DryRunWallet(balance=Decimal("0.1"))

        with pytest.raises(KizunaError) as exc_info:
            await wallet.transfer("0xseller", Decimal("0.3"))

        assert exc_info.value.code == ErrorCode.INSUFFICIENT_BALANCE
        assert wallet.transfers == []

    @pytest.mark.asyncio
    async def test_unknown_hash_reads_as_failed(self):
        wallet = DryRunWallet()
        assert await wallet.get_transaction_status("0xnope") == TxStatus.FAILED

    @pytest.mark.asyncio
    async def test_hashes_are_unique(self):
        wallet = DryRunWallet()
        a = await wallet.transfer("0xs", Decimal("0.1"))
        b = await wallet.transfer("0xs", Decimal("0.1"))
        assert a.tx_hash != b.tx_hash
