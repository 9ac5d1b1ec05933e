"""Tests for the command line front end."""

import json

import pytest

import app
from viewcall_commitment.chain import BlockRef
from viewcall_commitment.commitment import BLOCK_VERSION, Commitment
from viewcall_commitment.config import Settings
from viewcall_commitment.errors import ResolutionError
from viewcall_commitment.orchestrator import ProofResult
from viewcall_commitment.programs import CompoundJournal
from viewcall_commitment.prover import AttestingProver, CommandProver, DevProver, ProofProfile, Receipt

ENV_VARS = ("RPC_URL", "BEACON_API_URL", "ETH_WALLET_PRIVATE_KEY", "PROOF_PROFILE", "PROVER_COMMAND", "LOG_LEVEL")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def result() -> ProofResult:
    journal = CompoundJournal(
        commitment=Commitment.new(BLOCK_VERSION, 22_500_008, b"\x01" * 32, b"\x02" * 32),
        comet="0xc3d688B66703497DAA19211EEdff47f25384cdc3",
        annual_base_supply_rate=31_536_000_000_000_000,
        annual_comp_rewards_supply_rate=2_838_240_000_000_000,
        annual_base_borrow_rate=47_304_000_000_000_000,
        annual_comp_rewards_borrow_rate=1_773_900_000_000_000,
        config_digest=b"\x0c" * 32,
    )
    return ProofResult(Receipt(b"\x09" * 32, b"\x00" * 288, b"DEV0", ProofProfile.DEV), journal)


class TestParser:
    def test_defaults(self) -> None:
        args = app.build_parser().parse_args(["compound"])
        assert args.command == "compound"
        assert args.execution_block == BlockRef.parent()
        assert args.mode == "block"
        assert args.out == app.DEFAULT_OUT

    def test_inflation_requires_token_and_past_block(self) -> None:
        with pytest.raises(SystemExit):
            app.build_parser().parse_args(["inflation", "--token", "0x" + "70" * 20])
        args = app.build_parser().parse_args(
            ["inflation", "--token", "0x" + "70" * 20, "--past-execution-block", "0x10", "--exclude", "0x" + "71" * 20]
        )
        assert args.past_execution_block.number == 16
        assert args.exclude == ["0x" + "71" * 20]

    def test_bad_block_reference(self) -> None:
        with pytest.raises(SystemExit):
            app.build_parser().parse_args(["compound", "--execution-block", "pending"])

    def test_market_id_must_be_32_bytes(self) -> None:
        with pytest.raises(SystemExit):
            app.build_parser().parse_args(["morpho", "--market-id", "0x1234"])
        args = app.build_parser().parse_args(["morpho", "--market-id", "ab" * 32])
        assert args.market_id == b"\xab" * 32


class TestBackends:
    def test_dev(self) -> None:
        assert isinstance(app.make_backend(ProofProfile.DEV, Settings()), DevProver)

    def test_attested_needs_key(self) -> None:
        assert app.make_backend(ProofProfile.ATTESTED, Settings()) is None
        backend = app.make_backend(ProofProfile.ATTESTED, Settings(private_key="0x" + "01" * 32))
        assert isinstance(backend, AttestingProver)

    def test_zk_needs_command(self) -> None:
        assert app.make_backend(ProofProfile.GROTH16, Settings()) is None
        backend = app.make_backend(ProofProfile.GROTH16, Settings(prover_command="viewcall-prover --gpu"))
        assert isinstance(backend, CommandProver)
        assert backend.command == ["viewcall-prover", "--gpu"]


class TestMain:
    def test_missing_key_exits_with_config_error(self, capsys) -> None:
        assert app.main(["compound", "--profile", "attested"]) == 2
        assert "ETH_WALLET_PRIVATE_KEY" in capsys.readouterr().out

    def test_unknown_profile_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("PROOF_PROFILE", "stark")
        assert app.main(["compound"]) == 2

    def test_submit_needs_key(self) -> None:
        assert app.main(["compound", "--submit-to", "0x" + "5e" * 20]) == 2

    def test_writes_receipt(self, monkeypatch, tmp_path, result: ProofResult) -> None:
        seen = {}

        async def fake_run(args, settings, profile, backend):
            seen["profile"] = profile
            seen["rpc"] = settings.rpc_url
            return result

        monkeypatch.setattr(app, "run", fake_run)
        out = tmp_path / "receipt.json"
        assert app.main(["compound", "--rpc", "http://node:8545", "--out", str(out)]) == 0
        body = json.loads(out.read_text())
        assert body["command"] == "compound"
        assert body["journal"]["annual_comp_rewards_supply_rate"] == 2_838_240_000_000_000
        assert body["journal"]["commitment"]["id"] == result.journal.commitment.to_json()["id"]
        assert body["receipt"]["profile"] == "dev"
        assert seen == {"profile": ProofProfile.DEV, "rpc": "http://node:8545"}

    def test_pipeline_error(self, monkeypatch, tmp_path, capsys) -> None:
        async def failing_run(args, settings, profile, backend):
            raise ResolutionError("block 99 not found")

        monkeypatch.setattr(app, "run", failing_run)
        out = tmp_path / "receipt.json"
        assert app.main(["compound", "--out", str(out)]) == 1
        assert "[resolve] block 99 not found" in capsys.readouterr().out
        assert not out.exists()
