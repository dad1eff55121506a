import json
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted, TransactionNotFound

from utils.chain_client import ChainClient
from utils.exceptions import ChainSubmissionError, ChainTimeoutError, ChainTransactionFailed

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
PASSWORD = "escrow-secret"
PAYEE = "0x2222222222222222222222222222222222222222"


@pytest.fixture()
def keystore():
    return json.dumps(Account.encrypt(PRIVATE_KEY, PASSWORD, kdf="pbkdf2", iterations=1000))


@pytest.fixture()
def escrow_address():
    return Account.from_key(PRIVATE_KEY).address


@pytest.fixture()
def w3():
    w3 = MagicMock()
    w3.to_wei = Web3.to_wei
    w3.eth.get_transaction_count.return_value = 3
    w3.eth.get_block.return_value = {"baseFeePerGas": 10}
    w3.eth.chain_id = 1
    w3.eth.estimate_gas.return_value = 21000
    w3.eth.send_raw_transaction.return_value = b"\x12" * 32
    w3.eth.block_number = 105
    return w3


@pytest.fixture()
def client(w3):
    return ChainClient(provider_url=None, key_password=PASSWORD, w3=w3)


def test_submit_transfer_signs_eip1559_transfer(client, w3, keystore, escrow_address):
    result = client.submit_transfer(escrow_address, keystore, PAYEE, Decimal("1.5"), "Task payment: t1")

    assert result.tx_hash == "0x" + "12" * 32
    max_fee = 10 * 2 + Web3.to_wei(2, "gwei")
    assert result.fee == Decimal(Web3.from_wei(21000 * max_fee, "ether"))

    signed_tx = w3.eth.account.sign_transaction.call_args
    tx = signed_tx.args[0]
    assert tx["to"] == Web3.to_checksum_address(PAYEE)
    assert tx["value"] == Web3.to_wei(Decimal("1.5"), "ether")
    assert tx["nonce"] == 3
    assert tx["maxFeePerGas"] == max_fee
    assert tx["data"] == Web3.to_hex(text="Task payment: t1")
    assert tx["gas"] == 21000
    assert signed_tx.kwargs["private_key"] is not None
    w3.eth.get_transaction_count.assert_called_once_with(escrow_address, "pending")


def test_submit_rejects_key_for_other_address(client, w3, keystore):
    with pytest.raises(ChainSubmissionError):
        client.submit_transfer("0x" + "9" * 40, keystore, PAYEE, Decimal("1"))

    w3.eth.send_raw_transaction.assert_not_called()


def test_submit_wraps_rpc_errors(client, w3, keystore, escrow_address):
    w3.eth.estimate_gas.side_effect = ValueError("insufficient funds for gas * price + value")

    with pytest.raises(ChainSubmissionError) as exc_info:
        client.submit_transfer(escrow_address, keystore, PAYEE, Decimal("1"))

    assert "insufficient funds" in str(exc_info.value)


def test_submit_requires_key_password(w3, keystore, escrow_address):
    client = ChainClient(provider_url=None, key_password=None, w3=w3)

    with pytest.raises(ChainSubmissionError):
        client.submit_transfer(escrow_address, keystore, PAYEE, Decimal("1"))


def test_await_confirmation_counts_confirmations(client, w3):
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1, "blockNumber": 100}

    confirmation = client.await_confirmation("0xabc")

    assert confirmation.block_number == 100
    assert confirmation.confirmations == 6


def test_await_confirmation_timeout(client, w3):
    w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("timed out")

    with pytest.raises(ChainTimeoutError):
        client.await_confirmation("0xabc")


def test_await_confirmation_reverted(client, w3):
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "blockNumber": 100}

    with pytest.raises(ChainTransactionFailed) as exc_info:
        client.await_confirmation("0xabc")

    assert exc_info.value.tx_hash == "0xabc"


def test_transaction_status_confirmed(client, w3):
    w3.eth.get_transaction_receipt.return_value = {"status": 1, "blockNumber": 104}

    status = client.get_transaction_status("0xabc")

    assert status.confirmed
    assert status.block_number == 104
    assert status.confirmations == 2


def test_transaction_status_reverted(client, w3):
    w3.eth.get_transaction_receipt.return_value = {"status": 0, "blockNumber": 104}

    status = client.get_transaction_status("0xabc")

    assert status.failed
    assert not status.confirmed


def test_transaction_status_pending_in_mempool(client, w3):
    w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("no receipt")
    w3.eth.get_transaction.return_value = {"hash": "0xabc"}

    status = client.get_transaction_status("0xabc")

    assert status.pending


def test_transaction_status_dropped(client, w3):
    w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("no receipt")
    w3.eth.get_transaction.side_effect = TransactionNotFound("unknown")

    status = client.get_transaction_status("0xabc")

    assert status.failed


def test_get_balance_in_ether(client, w3):
    w3.eth.get_balance.return_value = 2 * 10 ** 18

    assert client.get_balance(PAYEE) == Decimal("2")


def test_missing_provider_is_rejected():
    with pytest.raises(RuntimeError):
        ChainClient(provider_url=None, key_password=PASSWORD)
