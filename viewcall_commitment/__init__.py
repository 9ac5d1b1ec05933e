"""Verifiable view-call results committed to Ethereum state."""

from .chain import CHAIN_SPECS, ETH_MAINNET_CHAIN_SPEC, ETH_SEPOLIA_CHAIN_SPEC, BlockHeader, BlockRef, ChainSpec
from .commitment import BeaconCommitment, BlockCommitment, Commitment, HistoryCommitment, commitment_mode
from .environment import EnvironmentInput
from .errors import (
    CallError,
    CommitmentMismatchError,
    FixedWidthOverflowError,
    JournalDecodeError,
    ProvingError,
    ReplayDivergenceError,
    ResolutionError,
    SubmissionError,
    ViewCallError,
    ZeroDenominatorError,
)
from .guests import GUESTS, replay, run_guest
from .journal import config_digest, decode_journal, encode_journal
from .orchestrator import ProofResult, prove, prove_compound_apr, prove_morpho_apr, prove_token_inflation
from .preflight import Preflight, record, run_program
from .prover import AttestingProver, CommandProver, DevProver, ProofProfile, Receipt, verify_receipt
from .replay import ReplayContext
from .resolver import EnvironmentHandle, resolve

__version__ = "0.1.0"

__all__ = [
    "CHAIN_SPECS",
    "ETH_MAINNET_CHAIN_SPEC",
    "ETH_SEPOLIA_CHAIN_SPEC",
    "BlockHeader",
    "BlockRef",
    "ChainSpec",
    "BeaconCommitment",
    "BlockCommitment",
    "Commitment",
    "HistoryCommitment",
    "commitment_mode",
    "EnvironmentInput",
    "CallError",
    "CommitmentMismatchError",
    "FixedWidthOverflowError",
    "JournalDecodeError",
    "ProvingError",
    "ReplayDivergenceError",
    "ResolutionError",
    "SubmissionError",
    "ViewCallError",
    "ZeroDenominatorError",
    "GUESTS",
    "replay",
    "run_guest",
    "config_digest",
    "decode_journal",
    "encode_journal",
    "ProofResult",
    "prove",
    "prove_compound_apr",
    "prove_morpho_apr",
    "prove_token_inflation",
    "Preflight",
    "record",
    "run_program",
    "AttestingProver",
    "CommandProver",
    "DevProver",
    "ProofProfile",
    "Receipt",
    "verify_receipt",
    "ReplayContext",
    "EnvironmentHandle",
    "resolve",
]
