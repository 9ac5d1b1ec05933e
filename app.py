# app.py
# Prove a DeFi metric computed from view calls against a committed Ethereum block,
# and write the receipt (journal + seal) as JSON.
import argparse
import asyncio
import json
import sys
import time
from typing import Optional

from viewcall_commitment.chain import CHAIN_SPECS, ETH_MAINNET_CHAIN_SPEC, ETH_SEPOLIA_CHAIN_SPEC, BlockRef, network_name
from viewcall_commitment.commitment import MODE_NAMES, Commitment, commitment_mode
from viewcall_commitment.config import Settings, configure_logging
from viewcall_commitment.errors import ViewCallError
from viewcall_commitment.orchestrator import (
    ProofResult,
    prove_compound_apr,
    prove_morpho_apr,
    prove_token_inflation,
)
from viewcall_commitment.programs import (
    CompoundConfig,
    InflationConfig,
    mainnet_compound_config,
    mainnet_morpho_config,
)
from viewcall_commitment.prover import AttestingProver, CommandProver, DevProver, ProofProfile
from viewcall_commitment.sources import Web3StateSource
from viewcall_commitment.submit import Web3Submitter

DEFAULT_OUT = "viewcall_receipt.json"
NETWORK_SPECS = {"mainnet": ETH_MAINNET_CHAIN_SPEC, "sepolia": ETH_SEPOLIA_CHAIN_SPEC}


def block_ref(text: str) -> BlockRef:
    try:
        return BlockRef.parse(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def market_id(text: str) -> bytes:
    raw = bytes.fromhex(text[2:] if text.startswith("0x") else text)
    if len(raw) != 32:
        raise argparse.ArgumentTypeError("market id must be 32 bytes of hex")
    return raw


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--rpc", default=None, help="Execution RPC URL (env RPC_URL)")
    common.add_argument("--beacon-api", default=None, help="Beacon API URL (env BEACON_API_URL)")
    common.add_argument("--network", choices=sorted(NETWORK_SPECS), default="mainnet", help="Chain rules to commit to")
    common.add_argument("--execution-block", type=block_ref, default=BlockRef.parent(), help="Block to run calls at (default: parent)")
    common.add_argument("--mode", choices=MODE_NAMES, default="block", help="Commitment mode (default: block)")
    common.add_argument("--commitment-block", type=block_ref, default=None, help="Later block to commit to (history mode)")
    common.add_argument("--profile", choices=[p.value for p in ProofProfile], default=None, help="Proof profile (env PROOF_PROFILE)")
    common.add_argument("--prover-cmd", default=None, help="External prover command line (env PROVER_COMMAND)")
    common.add_argument("--out", default=DEFAULT_OUT, help=f"Output JSON path (default: {DEFAULT_OUT})")
    common.add_argument("--compact", action="store_true", help="Write compact JSON without indentation")
    common.add_argument("--submit-to", default=None, help="Verifier contract to submit the receipt to")
    common.add_argument("--log-level", default=None, help="Logging level (env LOG_LEVEL)")

    ap = argparse.ArgumentParser(description="Prove view-call metrics against a committed Ethereum block.")
    sub = ap.add_subparsers(dest="command", required=True)

    compound = sub.add_parser("compound", parents=[common], help="Compound v3 supply/borrow APRs with COMP rewards")
    compound.add_argument("--comet", default=None, help="Comet market address (default: cUSDCv3)")

    morpho = sub.add_parser("morpho", parents=[common], help="Morpho Blue market supply/borrow APRs")
    morpho.add_argument("--market-id", type=market_id, default=None, help="Market id (default: wstETH/USDC)")

    inflation = sub.add_parser("inflation", parents=[common], help="ERC-20 circulating supply inflation")
    inflation.add_argument("--token", required=True, help="ERC-20 token address")
    inflation.add_argument("--exclude", action="append", default=[], help="Account excluded from circulation (repeatable)")
    inflation.add_argument("--past-execution-block", type=block_ref, required=True, help="Earlier snapshot block")
    return ap


def make_backend(profile: ProofProfile, settings: Settings):
    if profile is ProofProfile.DEV:
        return DevProver()
    if profile is ProofProfile.ATTESTED:
        if not settings.private_key:
            print("❌ attested profile requires ETH_WALLET_PRIVATE_KEY.")
            return None
        return AttestingProver(settings.private_key)
    if not settings.prover_command:
        print(f"❌ {profile.value} profile requires an external prover (--prover-cmd or PROVER_COMMAND).")
        return None
    return CommandProver(settings.prover_command)


async def run(args, settings: Settings, profile: ProofProfile, backend) -> ProofResult:
    chain_spec = NETWORK_SPECS[args.network]
    mode = commitment_mode(args.mode, settings.beacon_api_url, args.commitment_block)

    source = await Web3StateSource.connect(settings.rpc_url)
    chain_id = await source.chain_id()
    print(f"🌐 Connected to {network_name(chain_id)} (chainId {chain_id})")
    if chain_id not in CHAIN_SPECS:
        print(f"⚠️ No fork rules for chainId {chain_id}; resolution will fail.")

    if args.command == "compound":
        config = mainnet_compound_config()
        if args.comet:
            config = CompoundConfig(args.comet, config.quoter, config.price_path)
        return await prove_compound_apr(source, backend, config, args.execution_block, chain_spec, mode, profile)
    if args.command == "morpho":
        config = mainnet_morpho_config(args.market_id) if args.market_id else mainnet_morpho_config()
        return await prove_morpho_apr(source, backend, config, args.execution_block, chain_spec, mode, profile)

    config = InflationConfig(args.token, tuple(args.exclude))
    return await prove_token_inflation(
        source, backend, config, args.execution_block, args.past_execution_block, chain_spec, mode, profile=profile
    )


def journal_json(journal) -> dict:
    out = {}
    for name, _ in journal.ABI_FIELDS:
        value = getattr(journal, name)
        if isinstance(value, Commitment):
            value = value.to_json()
        elif isinstance(value, bytes):
            value = "0x" + value.hex()
        out[name] = value
    return out


def print_result(result: ProofResult) -> None:
    journal = result.journal
    print("\n📦 Journal")
    for name, value in journal_json(journal).items():
        if isinstance(value, dict):
            continue
        print(f"  {name}: {value}")
    print(f"\n🔗 {journal.commitment}")
    past = getattr(journal, "past_commitment", None)
    if past is not None:
        print(f"🔗 Past: {past}")
    print(f"🧾 Image ID: 0x{result.receipt.image_id.hex()}  Profile: {result.receipt.profile.value}")


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env().override(
        rpc_url=args.rpc,
        beacon_api_url=args.beacon_api,
        proof_profile=args.profile,
        prover_command=args.prover_cmd,
        log_level=args.log_level,
    )
    configure_logging(settings.log_level)

    try:
        profile = ProofProfile(settings.proof_profile)
    except ValueError:
        print(f"❌ Unknown proof profile: {settings.proof_profile}")
        return 2
    backend = make_backend(profile, settings)
    if backend is None:
        return 2
    if args.submit_to and not settings.private_key:
        print("❌ --submit-to requested but ETH_WALLET_PRIVATE_KEY env var not set.")
        return 2

    start = time.time()
    try:
        result = asyncio.run(run(args, settings, profile, backend))
    except ViewCallError as e:
        print(f"❌ {e}")
        return 1

    print_result(result)
    body = {"command": args.command, "journal": journal_json(result.journal), "receipt": result.receipt.to_json()}
    with open(args.out, "w") as f:
        json.dump(
            body,
            f,
            indent=None if args.compact else 2,
            separators=(",", ":") if args.compact else None,
            sort_keys=True,
        )
    print(f"📝 Wrote receipt → {args.out}")

    if args.submit_to:
        try:
            confirmation = Web3Submitter.from_url(settings.rpc_url, args.submit_to, settings.private_key).submit(result.receipt)
        except ViewCallError as e:
            print(f"❌ {e}")
            return 1
        print(f"✍️  Submitted in tx {confirmation.tx_hash} (block {confirmation.block_number})")

    print(f"\n⏱️  Elapsed: {time.time() - start:.2f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
