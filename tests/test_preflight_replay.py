"""Tests for preflight recording and verified replay."""

import asyncio
from dataclasses import replace

import pytest
from eth_utils import keccak

from fakechain import COMPOUND_STATE, POOL_A, POOL_B, RESPONDER_CODE, FakeChain
from viewcall_commitment.abi import ERC20
from viewcall_commitment.calculators import base_apr, reward_apr
from viewcall_commitment.chain import BlockRef
from viewcall_commitment.commitment import BLOCK_VERSION, BeaconCommitment, BlockCommitment, Commitment, HistoryCommitment
from viewcall_commitment.environment import EnvironmentInput
from viewcall_commitment.errors import CallError, CommitmentMismatchError, ReplayDivergenceError
from viewcall_commitment.guests import decode_payload, encode_payload, replay, run_guest
from viewcall_commitment.journal import config_digest, decode_journal, encode_journal
from viewcall_commitment.preflight import Preflight, record, run_program
from viewcall_commitment.programs import COMET, InflationJournal, circulating_supply_program, compound_apr_program
from viewcall_commitment.replay import ReplayContext
from viewcall_commitment.resolver import resolve


def run(coro):
    return asyncio.run(coro)


def prepare(chain, config, number=None, mode=BlockCommitment(), beacon=None):
    handle = run(resolve(chain, chain.start + 3 if number is None else number, chain.spec, mode, beacon))
    env_input, journal = run(run_program(chain, handle, compound_apr_program(config, handle.commitment)))
    return handle, env_input, journal


def replace_account(env_input, address, **changes):
    accounts = tuple(replace(a, **changes) if a.address == address else a for a in env_input.accounts)
    return replace(env_input, accounts=accounts)


class TestPreflight:
    def test_journal_from_live_state(self, chain: FakeChain, compound_config) -> None:
        handle, _, journal = prepare(chain, compound_config)
        s = COMPOUND_STATE
        assert journal.commitment == handle.commitment
        assert journal.comet == compound_config.comet
        assert journal.annual_base_supply_rate == base_apr(s["supply_rate"])
        assert journal.annual_base_borrow_rate == base_apr(s["borrow_rate"])
        assert journal.annual_comp_rewards_supply_rate == reward_apr(
            s["supply_speed"], s["comp_price"], s["total_supply"], 1_000
        )
        assert journal.annual_comp_rewards_supply_rate == 2_838_240_000_000_000
        assert journal.annual_comp_rewards_borrow_rate == reward_apr(
            s["borrow_speed"], s["comp_price"], s["total_borrow"], 1_000
        )

    def test_calls_recorded_in_order(self, chain: FakeChain, compound_config) -> None:
        _, env_input, _ = prepare(chain, compound_config)
        assert len(env_input.calls) == 8
        assert env_input.calls[0].data == COMET.call(compound_config.comet, "getUtilization").calldata
        assert env_input.calls[1].data == COMET.call(compound_config.comet, "getSupplyRate", 8 * 10**17).calldata
        assert env_input.calls[-1].to == compound_config.quoter

    def test_calls_run_at_the_resolved_block(self, chain: FakeChain, compound_config) -> None:
        handle, _, _ = prepare(chain, compound_config)
        blocks = {r[2] for r in chain.requests if r[0] in ("call", "get_proof")}
        assert blocks == {handle.block_number}

    def test_touched_state_is_proven(self, chain: FakeChain, compound_config) -> None:
        _, env_input, _ = prepare(chain, compound_config)
        addresses = [a.address for a in env_input.accounts]
        assert addresses == sorted(addresses)
        for address in (compound_config.comet, compound_config.quoter, POOL_A, POOL_B):
            assert any(a.lower() == address.lower() for a in addresses)
        comet = next(a for a in env_input.accounts if a.address == compound_config.comet)
        expected = set()
        for call in env_input.calls:
            if call.to == compound_config.comet:
                expected.update(chain.response_slots(call.to, call.data, env_input.header.number))
        assert [s.slot for s in comet.storage] == sorted(expected)
        assert comet.code == RESPONDER_CODE

    def test_reverted_call(self, chain: FakeChain, compound_config) -> None:
        handle = run(resolve(chain, chain.start, chain.spec))
        missing = replace(compound_config, comet="0x" + "99" * 20)
        with pytest.raises(CallError) as exc:
            run(run_program(chain, handle, compound_apr_program(missing, handle.commitment)))
        assert exc.value.call == "CometMainInterface.getUtilization"
        assert exc.value.address.lower() == "0x" + "99" * 20
        assert exc.value.stage == "preflight"

    def test_proof_failure_aborts(self, chain: FakeChain, compound_config, monkeypatch) -> None:
        handle = run(resolve(chain, chain.start, chain.spec))

        async def unavailable(address, slots, block_number):
            raise ConnectionError("node went away")

        monkeypatch.setattr(chain, "get_proof", unavailable)
        with pytest.raises(CallError, match="cannot fetch state proof"):
            run(run_program(chain, handle, compound_apr_program(compound_config, handle.commitment)))

    def test_finalized_recorder_refuses_calls(self, chain: FakeChain, inflation_config) -> None:
        handle = run(resolve(chain, chain.start, chain.spec))

        async def scenario():
            preflight = Preflight(chain, handle)
            await preflight.call(ERC20.call(inflation_config.token, "totalSupply"))
            await preflight.into_input()
            await preflight.call(ERC20.call(inflation_config.token, "totalSupply"))

        with pytest.raises(RuntimeError):
            run(scenario())

    def test_fixed_batch(self, chain: FakeChain, inflation_config) -> None:
        handle = run(resolve(chain, chain.start, chain.spec))
        calls = [ERC20.call(inflation_config.token, "balanceOf", a) for a in inflation_config.excluded_accounts]
        env_input, results = run(record(chain, handle, calls))
        assert results == [300_000, 150_000]
        assert len(env_input.calls) == 2

    def test_input_bytes_round_trip(self, chain: FakeChain, compound_config) -> None:
        _, env_input, _ = prepare(chain, compound_config)
        assert EnvironmentInput.from_bytes(env_input.to_bytes()) == env_input
        assert env_input.digest() == keccak(env_input.to_bytes())


class TestReplay:
    def test_matches_preflight(self, chain: FakeChain, compound_config) -> None:
        handle, env_input, journal = prepare(chain, compound_config)
        ctx = ReplayContext(env_input)
        assert ctx.commitment == handle.commitment
        assert ctx.run(compound_apr_program(compound_config, ctx.commitment)) == journal

    def test_deterministic(self, chain: FakeChain, compound_config) -> None:
        _, env_input, journal = prepare(chain, compound_config)
        params = {"config": compound_config.to_json()}
        first = replay("compound-apr", [env_input], params)
        assert first == replay("compound-apr", [env_input], params)
        assert first == encode_journal(journal)

    def test_beacon_mode(self, chain: FakeChain, compound_config) -> None:
        mode = BeaconCommitment("http://unused")
        _, env_input, journal = prepare(chain, compound_config, mode=mode, beacon=chain.beacon)
        assert ReplayContext(env_input).run(compound_apr_program(compound_config, journal.commitment)) == journal

    def test_history_mode(self, chain: FakeChain, compound_config) -> None:
        mode = HistoryCommitment(BlockRef(number=chain.start + 9))
        _, env_input, journal = prepare(chain, compound_config, mode=mode)
        assert journal.commitment.claim == chain.start + 9
        assert ReplayContext(env_input).run(compound_apr_program(compound_config, journal.commitment)) == journal

    def test_no_network_access(self, chain: FakeChain, compound_config) -> None:
        _, env_input, _ = prepare(chain, compound_config)
        before = len(chain.requests)
        replay("compound-apr", [env_input], {"config": compound_config.to_json()})
        assert len(chain.requests) == before


class TestTamperDetection:
    @pytest.fixture
    def prepared(self, chain: FakeChain, compound_config):
        return prepare(chain, compound_config)

    def test_header_field(self, prepared) -> None:
        _, env_input, _ = prepared
        tampered = replace(env_input, header=env_input.header.replace(gasUsed=1))
        with pytest.raises(CommitmentMismatchError, match="block hash"):
            ReplayContext(tampered)

    def test_storage_value(self, prepared, compound_config) -> None:
        _, env_input, _ = prepared
        comet = next(a for a in env_input.accounts if a.address == compound_config.comet)
        storage = (replace(comet.storage[0], value=comet.storage[0].value + 1),) + comet.storage[1:]
        with pytest.raises(CommitmentMismatchError):
            ReplayContext(replace_account(env_input, comet.address, storage=storage))

    def test_account_balance(self, prepared, compound_config) -> None:
        _, env_input, _ = prepared
        with pytest.raises(CommitmentMismatchError):
            ReplayContext(replace_account(env_input, compound_config.quoter, balance=10**18))

    def test_proof_node_byte(self, prepared, compound_config) -> None:
        _, env_input, _ = prepared
        comet = next(a for a in env_input.accounts if a.address == compound_config.comet)
        node = bytearray(comet.proof[-1])
        node[len(node) // 2] ^= 0xFF
        with pytest.raises(CommitmentMismatchError):
            ReplayContext(replace_account(env_input, comet.address, proof=comet.proof[:-1] + (bytes(node),)))

    def test_forged_call_output(self, prepared, compound_config) -> None:
        _, env_input, _ = prepared
        forged = replace(env_input.calls[1], output=(2 * COMPOUND_STATE["supply_rate"]).to_bytes(32, "big"))
        ctx = ReplayContext(replace(env_input, calls=env_input.calls[:1] + (forged,) + env_input.calls[2:]))
        with pytest.raises(CommitmentMismatchError, match="differs from execution"):
            ctx.run(compound_apr_program(compound_config, ctx.commitment))

    def test_forged_output_through_guest(self, prepared, compound_config) -> None:
        _, env_input, _ = prepared
        forged = replace(env_input.calls[-1], output=b"\x00" * len(env_input.calls[-1].output))
        tampered = replace(env_input, calls=env_input.calls[:-1] + (forged,))
        with pytest.raises(CommitmentMismatchError):
            replay("compound-apr", [tampered], {"config": compound_config.to_json()})

    def test_bytecode(self, prepared, compound_config) -> None:
        _, env_input, _ = prepared
        with pytest.raises(CommitmentMismatchError, match="code hash"):
            ReplayContext(replace_account(env_input, compound_config.comet, code=RESPONDER_CODE + b"\x00"))

    def test_bytecode_withheld(self, prepared, compound_config) -> None:
        _, env_input, _ = prepared
        ctx = ReplayContext(replace_account(env_input, compound_config.comet, code=None))
        with pytest.raises(CommitmentMismatchError, match="outside the proven fragments"):
            ctx.run(compound_apr_program(compound_config, ctx.commitment))

    def test_slot_outside_proven_fragments(self, chain: FakeChain, prepared, compound_config) -> None:
        _, env_input, _ = prepared
        record = env_input.calls[1]
        withheld = set(chain.response_slots(record.to, record.data, env_input.header.number))
        comet = next(a for a in env_input.accounts if a.address == compound_config.comet)
        storage = tuple(s for s in comet.storage if s.slot not in withheld)
        ctx = ReplayContext(replace_account(env_input, comet.address, storage=storage))
        with pytest.raises(CommitmentMismatchError, match="outside the proven fragments"):
            ctx.run(compound_apr_program(compound_config, ctx.commitment))

    def test_commitment_digest(self, prepared) -> None:
        handle, env_input, _ = prepared
        forged = Commitment.new(BLOCK_VERSION, handle.block_number, b"\x00" * 32, handle.commitment.config_id)
        with pytest.raises(CommitmentMismatchError):
            ReplayContext(replace(env_input, commitment=forged))

    def test_commitment_for_other_chain_rules(self, prepared) -> None:
        handle, env_input, _ = prepared
        forged = replace(handle.commitment, config_id=keccak(b"other rules"))
        with pytest.raises(CommitmentMismatchError, match="chain rules"):
            ReplayContext(replace(env_input, commitment=forged))

    def test_unknown_chain(self, prepared) -> None:
        _, env_input, _ = prepared
        with pytest.raises(CommitmentMismatchError):
            ReplayContext(replace(env_input, chain_id=5))

    def test_call_target_without_proof(self, prepared, compound_config) -> None:
        _, env_input, _ = prepared
        accounts = tuple(a for a in env_input.accounts if a.address != compound_config.quoter)
        with pytest.raises(CommitmentMismatchError, match="no proven account"):
            ReplayContext(replace(env_input, accounts=accounts))

    def test_history_entry(self, chain: FakeChain, compound_config) -> None:
        mode = HistoryCommitment(BlockRef(number=chain.start + 9))
        _, env_input, _ = prepare(chain, compound_config, mode=mode)
        account = env_input.anchor.history_account
        entry = replace(account.storage[0], value=account.storage[0].value ^ 1)
        anchor = replace(env_input.anchor, history_account=replace(account, storage=(entry,)))
        with pytest.raises(CommitmentMismatchError):
            ReplayContext(replace(env_input, anchor=anchor))

    def test_beacon_branch(self, chain: FakeChain, compound_config) -> None:
        mode = BeaconCommitment("http://unused")
        _, env_input, _ = prepare(chain, compound_config, mode=mode, beacon=chain.beacon)
        branch = (b"\x00" * 32,) + env_input.anchor.execution_branch[1:]
        anchor = replace(env_input.anchor, execution_branch=branch)
        with pytest.raises(CommitmentMismatchError, match="branch"):
            ReplayContext(replace(env_input, anchor=anchor))


class TestDivergence:
    def test_different_arguments(self, chain: FakeChain, compound_config) -> None:
        _, env_input, _ = prepare(chain, compound_config)
        other = replace(compound_config, amount_in=2 * 10**18)
        ctx = ReplayContext(env_input)
        with pytest.raises(ReplayDivergenceError):
            ctx.run(compound_apr_program(other, ctx.commitment))

    def test_unreplayed_records(self, chain: FakeChain, compound_config) -> None:
        _, env_input, _ = prepare(chain, compound_config)

        def utilization_only():
            return (yield COMET.call(compound_config.comet, "getUtilization"))

        with pytest.raises(ReplayDivergenceError, match="never replayed"):
            ReplayContext(env_input).run(utilization_only())

    def test_exhausted_trace(self, chain: FakeChain, compound_config) -> None:
        handle = run(resolve(chain, chain.start + 3, chain.spec))
        env_input, _ = run(record(chain, handle, [COMET.call(compound_config.comet, "getUtilization")]))
        ctx = ReplayContext(env_input)
        with pytest.raises(ReplayDivergenceError, match="not recorded"):
            ctx.run(compound_apr_program(compound_config, ctx.commitment))


class TestGuests:
    def test_payload_round_trip(self, chain: FakeChain, compound_config) -> None:
        _, env_input, _ = prepare(chain, compound_config)
        params = {"config": compound_config.to_json()}
        inputs, decoded = decode_payload(encode_payload([env_input], params))
        assert inputs == [env_input]
        assert decoded == params

    def test_run_guest(self, chain: FakeChain, compound_config) -> None:
        _, env_input, journal = prepare(chain, compound_config)
        payload = encode_payload([env_input], {"config": compound_config.to_json()})
        assert run_guest("compound-apr", payload) == encode_journal(journal)

    def test_unknown_guest(self) -> None:
        with pytest.raises(ValueError, match="unknown guest"):
            replay("aave-apr", [], {})

    def test_lane_count(self, chain: FakeChain, compound_config) -> None:
        _, env_input, _ = prepare(chain, compound_config)
        with pytest.raises(ValueError, match="takes 2"):
            replay("token-inflation", [env_input], {})

    def test_inflation_lanes(self, chain: FakeChain, inflation_config) -> None:
        def lane(number):
            handle = run(resolve(chain, number, chain.spec))
            env_input, result = run(run_program(chain, handle, circulating_supply_program(inflation_config)))
            return env_input, result

        now_input, now = lane(chain.start + 5)
        past_input, past = lane(chain.start)
        assert now == (1_000_000, 600_000)
        assert past == (900_000, 450_000)
        data = replay("token-inflation", [now_input, past_input], {"config": inflation_config.to_json()})
        assert int.from_bytes(data[-64:-32], "big") == 3333
        assert data[-32:] == config_digest(inflation_config)

    def test_journal_names_its_config(self, chain: FakeChain, inflation_config) -> None:
        def journal(config):
            lanes = []
            for number in (chain.start + 5, chain.start):
                handle = run(resolve(chain, number, chain.spec))
                lanes.append(run(run_program(chain, handle, circulating_supply_program(config)))[0])
            return decode_journal(InflationJournal, replay("token-inflation", lanes, {"config": config.to_json()}))

        treasury_only = replace(inflation_config, excluded_accounts=inflation_config.excluded_accounts[:1])
        full, partial = journal(inflation_config), journal(treasury_only)
        assert full.inflation_basis_points == 3333
        assert partial.inflation_basis_points == 2500
        assert full.config_digest == config_digest(inflation_config)
        assert partial.config_digest == config_digest(treasury_only)
        assert full.config_digest != partial.config_digest


class TestIsolation:
    def test_runs_do_not_share_inputs(self, chain: FakeChain, compound_config) -> None:
        first_handle, first, _ = prepare(chain, compound_config, number=chain.start + 2)
        snapshot = first.to_bytes()
        second_handle, second, _ = prepare(chain, compound_config, number=chain.start + 6)
        assert first.to_bytes() == snapshot
        assert first_handle.commitment != second_handle.commitment
        assert first.header != second.header
        assert ReplayContext(first).commitment.claim == chain.start + 2
