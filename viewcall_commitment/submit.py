"""Submitting receipts to an on-chain verifier contract.

The verifier is expected to expose ``imageID()`` and
``submit(bytes journal, bytes seal)``; it checks the seal and the journal
commitment itself. This side only makes sure the receipt is for the image
the contract accepts, signs the transaction and waits for it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from eth_account import Account
from eth_utils import encode_hex, to_checksum_address
from web3 import Web3

from .errors import SubmissionError
from .prover import ProofProfile, Receipt

logger = logging.getLogger(__name__)

VERIFIER_ABI = [
    {
        "type": "function",
        "name": "imageID",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "bytes32"}],
    },
    {
        "type": "function",
        "name": "submit",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "journal", "type": "bytes"}, {"name": "seal", "type": "bytes"}],
        "outputs": [],
    },
]


@dataclass(frozen=True)
class Confirmation:
    tx_hash: str
    block_number: int
    gas_used: int


class SubmissionAdapter(Protocol):
    def submit(self, receipt: Receipt) -> Confirmation: ...


class Web3Submitter:
    def __init__(self, w3: Web3, verifier: str, private_key: str, timeout: float = 300):
        self.w3 = w3
        self.verifier = to_checksum_address(verifier)
        self.account = Account.from_key(private_key)
        self.timeout = timeout

    @classmethod
    def from_url(cls, rpc_url: str, verifier: str, private_key: str, timeout: float = 300) -> "Web3Submitter":
        return cls(Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30})), verifier, private_key, timeout)

    def submit(self, receipt: Receipt, gas: Optional[int] = None) -> Confirmation:
        if receipt.profile is ProofProfile.DEV:
            raise SubmissionError("dev receipts carry no proof and cannot be verified on-chain")
        contract = self.w3.eth.contract(address=self.verifier, abi=VERIFIER_ABI)
        try:
            accepted = bytes(contract.functions.imageID().call())
        except Exception as exc:
            raise SubmissionError(f"cannot read imageID() from verifier {self.verifier}: {exc}") from exc
        if accepted != receipt.image_id:
            raise SubmissionError(
                f"verifier {self.verifier} accepts image {encode_hex(accepted)}, receipt is for {encode_hex(receipt.image_id)}"
            )

        params = {
            "from": self.account.address,
            "nonce": self.w3.eth.get_transaction_count(self.account.address),
            "chainId": self.w3.eth.chain_id,
        }
        if gas is not None:
            params["gas"] = gas
        try:
            tx = contract.functions.submit(receipt.journal, receipt.seal).build_transaction(params)
            signed = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as exc:
            raise SubmissionError(f"submit() to {self.verifier} failed: {exc}") from exc

        logger.info("sent %s, waiting for confirmation", encode_hex(tx_hash))
        result = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.timeout)
        if result["status"] != 1:
            raise SubmissionError(f"submit() transaction {encode_hex(tx_hash)} reverted")
        logger.info("confirmed in block %s", result["blockNumber"])
        return Confirmation(
            tx_hash=encode_hex(tx_hash), block_number=result["blockNumber"], gas_used=result["gasUsed"]
        )
