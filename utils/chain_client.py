# utils/chain_client.py
import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted, TransactionNotFound

from utils.exceptions import ChainSubmissionError, ChainTimeoutError, ChainTransactionFailed
from utils.logging_utils import get_logger

logger = get_logger("chain_client")


@dataclass
class TransferResult:
    tx_hash: str
    fee: Decimal


@dataclass
class Confirmation:
    block_number: int
    confirmations: int = 1


@dataclass
class TransactionStatus:
    confirmed: bool
    failed: bool = False
    block_number: Optional[int] = None
    confirmations: int = 0

    @property
    def pending(self):
        return not self.confirmed and not self.failed


class ChainClient:
    """
    Native-coin transfers out of escrow accounts over web3.
    Escrow keys are stored as eth-account keystore JSON and decrypted per transfer.
    """

    def __init__(self, provider_url, key_password, confirmation_timeout=120,
                 poll_latency=2, rpc_timeout=15, priority_fee_gwei=2, w3=None):
        if w3 is None:
            if not provider_url:
                raise RuntimeError("Missing WEB3_PROVIDER configuration")
            w3 = Web3(Web3.HTTPProvider(provider_url, request_kwargs={"timeout": rpc_timeout}))
        self.w3 = w3
        self.key_password = key_password
        self.confirmation_timeout = confirmation_timeout
        self.poll_latency = poll_latency
        self.priority_fee_gwei = priority_fee_gwei

    # ----------------- keys -----------------
    @staticmethod
    def encrypt_key(private_key, password):
        """Keystore JSON for ProjectEscrow.encrypted_private_key."""
        return json.dumps(Account.encrypt(private_key, password))

    def _load_account(self, key_material, from_address):
        if not self.key_password:
            raise ChainSubmissionError("Missing ESCROW_KEY_PASSWORD configuration")
        keystore = json.loads(key_material) if isinstance(key_material, str) else key_material
        private_key = Account.decrypt(keystore, self.key_password)
        account = Account.from_key(private_key)
        if account.address != Web3.to_checksum_address(from_address):
            raise ChainSubmissionError(f"Key material does not match escrow address {from_address}")
        return account, private_key

    # ----------------- transfers -----------------
    def submit_transfer(self, from_address, key_material, to_address, amount, note=None):
        try:
            account, private_key = self._load_account(key_material, from_address)
            to_address = Web3.to_checksum_address(to_address)

            nonce = self.w3.eth.get_transaction_count(account.address, "pending")
            latest_block = self.w3.eth.get_block("latest")
            base_fee = latest_block.get("baseFeePerGas", 0)
            priority_fee = self.w3.to_wei(self.priority_fee_gwei, "gwei")
            max_fee_per_gas = base_fee * 2 + priority_fee

            tx = {
                "from": account.address,
                "to": to_address,
                "value": self.w3.to_wei(Decimal(str(amount)), "ether"),
                "nonce": nonce,
                "chainId": self.w3.eth.chain_id,
                "maxFeePerGas": max_fee_per_gas,
                "maxPriorityFeePerGas": priority_fee,
            }
            if note:
                tx["data"] = Web3.to_hex(text=note)
            tx["gas"] = self.w3.eth.estimate_gas(tx)

            signed_tx = self.w3.eth.account.sign_transaction(tx, private_key=private_key)
            tx_hash = Web3.to_hex(self.w3.eth.send_raw_transaction(signed_tx.raw_transaction))
        except ChainSubmissionError:
            raise
        except Exception as e:
            logger.error(f"[submit_transfer] {from_address} -> {to_address} failed: {e}")
            raise ChainSubmissionError(f"Failed to submit transfer: {e}") from e

        fee = Web3.from_wei(tx["gas"] * max_fee_per_gas, "ether")
        logger.info(f"[submit_transfer] {amount} {from_address} -> {to_address} sent: {tx_hash}")
        return TransferResult(tx_hash=tx_hash, fee=Decimal(fee))

    def await_confirmation(self, tx_hash):
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.confirmation_timeout, poll_latency=self.poll_latency
            )
        except TimeExhausted as e:
            raise ChainTimeoutError(f"Transaction {tx_hash} not confirmed within "
                                    f"{self.confirmation_timeout}s") from e

        if receipt["status"] == 0:
            raise ChainTransactionFailed(f"Transaction {tx_hash} reverted", tx_hash=tx_hash)

        block_number = receipt["blockNumber"]
        confirmations = max(self.w3.eth.block_number - block_number + 1, 1)
        return Confirmation(block_number=block_number, confirmations=confirmations)

    def get_transaction_status(self, tx_hash):
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            try:
                self.w3.eth.get_transaction(tx_hash)
            except TransactionNotFound:
                # unknown to the node: dropped
                return TransactionStatus(confirmed=False, failed=True)
            return TransactionStatus(confirmed=False)

        if receipt["status"] == 0:
            return TransactionStatus(confirmed=False, failed=True, block_number=receipt["blockNumber"])

        block_number = receipt["blockNumber"]
        return TransactionStatus(
            confirmed=True,
            block_number=block_number,
            confirmations=max(self.w3.eth.block_number - block_number + 1, 1),
        )

    def get_balance(self, address):
        wei = self.w3.eth.get_balance(Web3.to_checksum_address(address))
        return Decimal(Web3.from_wei(wei, "ether"))
