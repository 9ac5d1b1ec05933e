"""Proving backends and receipts.

The proof system is a black box behind ``ProvingBackend.prove(guest,
payload, profile)``. Two in-process backends replay the guest locally:
``DevProver`` issues an unsound dev-mode seal for testing, and
``AttestingProver`` seals the claim with an EIP-191 signature. Anything
producing real zero-knowledge receipts runs as an external command
(``CommandProver``).
"""

from __future__ import annotations

import json
import logging
import shlex
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Sequence, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import decode_hex, encode_hex, keccak, to_checksum_address

from .errors import ProvingError
from .guests import get_guest, run_guest

logger = logging.getLogger(__name__)

DEV_SEAL_PREFIX = b"DEV0"


class ProofProfile(str, Enum):
    DEV = "dev"
    ATTESTED = "attested"
    COMPOSITE = "composite"
    SUCCINCT = "succinct"
    GROTH16 = "groth16"

    @property
    def local(self) -> bool:
        return self in (ProofProfile.DEV, ProofProfile.ATTESTED)


def claim_digest(image_id: bytes, journal: bytes) -> bytes:
    """What a seal attests to: this image produced this journal."""
    return keccak(image_id + keccak(journal))


@dataclass(frozen=True)
class Receipt:
    image_id: bytes
    journal: bytes
    seal: bytes
    profile: ProofProfile

    @property
    def claim(self) -> bytes:
        return claim_digest(self.image_id, self.journal)

    def to_json(self) -> dict:
        return {
            "imageId": encode_hex(self.image_id),
            "journal": encode_hex(self.journal),
            "seal": encode_hex(self.seal),
            "profile": self.profile.value,
        }

    @classmethod
    def from_json(cls, data: dict) -> "Receipt":
        return cls(
            image_id=decode_hex(data["imageId"]),
            journal=decode_hex(data["journal"]),
            seal=decode_hex(data["seal"]),
            profile=ProofProfile(data["profile"]),
        )


class ProvingBackend(Protocol):
    def prove(self, guest: str, payload: bytes, profile: ProofProfile) -> Receipt: ...


def _require_profile(backend: str, profile: ProofProfile, *accepted: ProofProfile) -> None:
    if profile not in accepted:
        raise ProvingError(f"{backend} cannot produce {profile.value} receipts")


class DevProver:
    """Replays the guest in-process; the seal proves nothing."""

    def prove(self, guest: str, payload: bytes, profile: ProofProfile = ProofProfile.DEV) -> Receipt:
        _require_profile("dev prover", profile, ProofProfile.DEV)
        image_id = get_guest(guest).image_id
        journal = run_guest(guest, payload)
        return Receipt(image_id, journal, DEV_SEAL_PREFIX + claim_digest(image_id, journal), profile)


class AttestingProver:
    """Replays the guest in-process and signs the claim digest (EIP-191)."""

    def __init__(self, private_key: str):
        self.private_key = private_key

    @property
    def signer(self) -> str:
        return Account.from_key(self.private_key).address

    def prove(self, guest: str, payload: bytes, profile: ProofProfile = ProofProfile.ATTESTED) -> Receipt:
        _require_profile("attesting prover", profile, ProofProfile.ATTESTED)
        image_id = get_guest(guest).image_id
        journal = run_guest(guest, payload)
        msg = encode_defunct(primitive=claim_digest(image_id, journal))
        signed = Account.sign_message(msg, private_key=self.private_key)
        return Receipt(image_id, journal, bytes(signed.signature), profile)


class CommandProver:
    """Runs an external prover: payload on stdin, receipt JSON on stdout."""

    def __init__(self, command: Union[str, Sequence[str]], timeout: Optional[float] = None):
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        self.timeout = timeout

    def prove(self, guest: str, payload: bytes, profile: ProofProfile = ProofProfile.GROTH16) -> Receipt:
        if profile.local:
            raise ProvingError(f"external prover does not produce {profile.value} receipts")
        image_id = get_guest(guest).image_id
        argv = [*self.command, "--guest", guest, "--image-id", encode_hex(image_id), "--profile", profile.value]
        logger.info("running external prover: %s", " ".join(argv))
        try:
            proc = subprocess.run(argv, input=payload, capture_output=True, timeout=self.timeout, check=False)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ProvingError(f"external prover failed to run: {exc}") from exc
        if proc.returncode != 0:
            stderr = proc.stderr.decode(errors="replace").strip()
            raise ProvingError(f"external prover exited with {proc.returncode}: {stderr}")
        try:
            receipt = Receipt.from_json(json.loads(proc.stdout))
        except (ValueError, KeyError, TypeError) as exc:
            raise ProvingError(f"external prover printed no receipt: {exc}") from exc
        if receipt.image_id != image_id:
            raise ProvingError(f"external prover proved image {encode_hex(receipt.image_id)}, not {guest}")
        return receipt


def verify_receipt(receipt: Receipt, image_id: bytes, signer: Optional[str] = None) -> None:
    """Check a locally produced receipt. zk receipts are checked by the on-chain verifier."""
    if receipt.image_id != image_id:
        raise ProvingError("receipt is for another image")
    if receipt.profile is ProofProfile.DEV:
        if receipt.seal != DEV_SEAL_PREFIX + receipt.claim:
            raise ProvingError("dev seal does not match the receipt claim")
    elif receipt.profile is ProofProfile.ATTESTED:
        if signer is None:
            raise ProvingError("attested receipts need the expected signer address")
        recovered = Account.recover_message(encode_defunct(primitive=receipt.claim), signature=receipt.seal)
        if recovered != to_checksum_address(signer):
            raise ProvingError(f"receipt was attested by {recovered}, expected {signer}")
    else:
        raise ProvingError(f"{receipt.profile.value} receipts are verified on-chain")
