"""Tests for txrace configuration, types, transaction builder and report."""

from unittest.mock import patch

import base58
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.signature import Signature

from txrace.config import ConfigBuilder, config_builder, config_from_env, load_signer
from txrace.errors import TxRaceError
from txrace.report import format_report, landed_first
from txrace.transaction import MEMO_PROGRAM_ID, build_memo, build_test_transaction
from txrace.types import (
    BenchConfig,
    BlockRecord,
    CommitmentLevel,
    ProtocolTimeouts,
    RaceReport,
    SubmissionOutcome,
    SubmissionPath,
    SubmissionState,
)


SIGNER = Keypair.from_seed(bytes([1] * 32))
BLOCKHASH = Hash(bytes([7] * 32))
FULL_ENV = {
    "RPC_URL": "http://localhost:8899",
    "WS_URL": "ws://localhost:8900",
    "PVT_KEY": str(SIGNER),
}


def _builder() -> ConfigBuilder:
    return (
        config_builder()
        .rpc_url("http://localhost:8899")
        .ws_url("ws://localhost:8900")
        .private_key(str(SIGNER))
    )


def _outcome(path: SubmissionPath, state: SubmissionState = SubmissionState.SENT) -> SubmissionOutcome:
    return SubmissionOutcome(
        path=path,
        signature=Signature.default(),
        state=state,
        elapsed_ms=1.5,
        destinations=2 if path == SubmissionPath.QUIC else 1,
    )


# ============================================================================
# ConfigBuilder Tests
# ============================================================================


class TestConfigBuilder:
    def test_build_with_required_fields(self):
        config = _builder().build()
        assert config.rpc_url == "http://localhost:8899"
        assert config.ws_url == "ws://localhost:8900"
        assert config.commitment == CommitmentLevel.FINALIZED
        assert config.warmup_count == 3
        assert config.fanout_slots == 12
        assert config.poll_interval_ms == 250
        assert config.poll_timeout_ms == 30_000
        assert config.skip_preflight is False
        assert config.protocol_timeouts.quic == 5_000

    def test_missing_rpc_url_raises(self):
        with pytest.raises(TxRaceError) as exc_info:
            config_builder().ws_url("ws://x").private_key("k").build()
        assert exc_info.value.code == "CONFIG"
        assert "RPC_URL" in str(exc_info.value)

    def test_missing_ws_url_raises(self):
        with pytest.raises(TxRaceError) as exc_info:
            config_builder().rpc_url("http://x").private_key("k").build()
        assert "WS_URL" in str(exc_info.value)

    def test_missing_private_key_raises(self):
        with pytest.raises(TxRaceError) as exc_info:
            config_builder().rpc_url("http://x").ws_url("ws://x").build()
        assert "PVT_KEY" in str(exc_info.value)

    def test_all_options(self):
        config = (
            _builder()
            .commitment(CommitmentLevel.CONFIRMED)
            .warmup_count(0)
            .fanout_slots(4)
            .poll_interval(100)
            .poll_timeout(5_000)
            .skip_preflight(True)
            .protocol_timeouts(ProtocolTimeouts(websocket=1_000, http=2_000))
            .build()
        )
        assert config.commitment == CommitmentLevel.CONFIRMED
        assert config.warmup_count == 0
        assert config.fanout_slots == 4
        assert config.poll_interval_ms == 100
        assert config.poll_timeout_ms == 5_000
        assert config.skip_preflight is True
        assert config.protocol_timeouts.http == 2_000

    def test_invalid_fanout_raises(self):
        with pytest.raises(TxRaceError):
            _builder().fanout_slots(0).build()
        with pytest.raises(TxRaceError):
            _builder().fanout_slots(101).build()

    def test_negative_warmup_raises(self):
        with pytest.raises(TxRaceError) as exc_info:
            _builder().warmup_count(-1).build()
        assert exc_info.value.code == "CONFIG"

    def test_repr_hides_private_key(self):
        config = _builder().build()
        assert str(SIGNER) not in repr(config)


class TestConfigFromEnv:
    def test_reads_all_variables(self):
        config = config_from_env(FULL_ENV)
        assert config.rpc_url == FULL_ENV["RPC_URL"]
        assert config.ws_url == FULL_ENV["WS_URL"]
        assert config.private_key == FULL_ENV["PVT_KEY"]

    @pytest.mark.parametrize("missing", ["RPC_URL", "WS_URL", "PVT_KEY"])
    def test_missing_variable_names_it(self, missing):
        env = {k: v for k, v in FULL_ENV.items() if k != missing}
        with pytest.raises(TxRaceError) as exc_info:
            config_from_env(env)
        assert exc_info.value.code == "CONFIG"
        assert missing in str(exc_info.value)

    def test_empty_variable_counts_as_missing(self):
        env = dict(FULL_ENV, WS_URL="")
        with pytest.raises(TxRaceError) as exc_info:
            config_from_env(env)
        assert "WS_URL" in str(exc_info.value)

    def test_process_environment_loads_dotenv(self, monkeypatch):
        for name, value in FULL_ENV.items():
            monkeypatch.setenv(name, value)
        with patch("txrace.config.load_dotenv") as load:
            config = config_from_env()
        load.assert_called_once()
        assert config.rpc_url == FULL_ENV["RPC_URL"]

    def test_explicit_mapping_skips_dotenv(self):
        with patch("txrace.config.load_dotenv") as load:
            config_from_env(FULL_ENV)
        load.assert_not_called()


class TestLoadSigner:
    def test_decodes_base58_keypair(self):
        encoded = base58.b58encode(bytes(SIGNER)).decode()
        config = BenchConfig(rpc_url="http://x", ws_url="ws://x", private_key=encoded)
        assert load_signer(config).pubkey() == SIGNER.pubkey()

    def test_invalid_key_raises_config_error(self):
        config = BenchConfig(rpc_url="http://x", ws_url="ws://x", private_key="not-a-key!")
        with pytest.raises(TxRaceError) as exc_info:
            load_signer(config)
        assert exc_info.value.code == "CONFIG"
        assert "PVT_KEY" in str(exc_info.value)

    def test_wrong_length_raises_config_error(self):
        encoded = base58.b58encode(b"\x01" * 10).decode()
        config = BenchConfig(rpc_url="http://x", ws_url="ws://x", private_key=encoded)
        with pytest.raises(TxRaceError):
            load_signer(config)


# ============================================================================
# Error Tests
# ============================================================================


class TestTxRaceError:
    def test_config_error(self):
        err = TxRaceError.config("bad config")
        assert err.code == "CONFIG"
        assert str(err) == "bad config"

    def test_rpc_error_keeps_code(self):
        err = TxRaceError.rpc(-32002, "Transaction simulation failed", {"logs": []})
        assert err.code == "RPC"
        assert err.details == {"code": -32002, "data": {"logs": []}}
        assert "-32002" in str(err)

    def test_timeout_error(self):
        err = TxRaceError.timeout(5000)
        assert err.code == "TIMEOUT"
        assert "5000" in str(err)

    def test_block_fetch_error(self):
        err = TxRaceError.block_fetch(42, "boom")
        assert err.code == "BLOCK_FETCH"
        assert err.details == {"slot": 42}

    def test_is_exception(self):
        with pytest.raises(TxRaceError):
            raise TxRaceError.not_connected()


# ============================================================================
# Type Tests
# ============================================================================


class TestTypes:
    def test_commitment_ordering(self):
        assert CommitmentLevel.FINALIZED.is_satisfied_by("finalized")
        assert not CommitmentLevel.FINALIZED.is_satisfied_by("confirmed")
        assert CommitmentLevel.CONFIRMED.is_satisfied_by("finalized")
        assert CommitmentLevel.PROCESSED.is_satisfied_by("processed")
        assert not CommitmentLevel.PROCESSED.is_satisfied_by(None)
        assert not CommitmentLevel.CONFIRMED.is_satisfied_by("bogus")

    def test_block_record_index_of(self):
        target = Signature.new_unique()
        block = BlockRecord(
            slot=10,
            signatures=[Signature.new_unique(), None, target, Signature.new_unique()],
        )
        assert block.transaction_count == 4
        assert block.index_of(target) == 2
        assert block.index_of(Signature.new_unique()) is None

    def test_block_record_index_zero_is_real(self):
        target = Signature.new_unique()
        block = BlockRecord(slot=10, signatures=[target])
        assert block.index_of(target) == 0

    def test_race_report_same_slot(self):
        report = RaceReport(rpc=_outcome(SubmissionPath.RPC), quic=_outcome(SubmissionPath.QUIC))
        assert report.same_slot is False
        report.rpc_slot = report.quic_slot = 0
        assert report.same_slot is True
        report.quic_slot = None
        assert report.same_slot is False

    def test_submission_outcome_defaults(self):
        outcome = SubmissionOutcome(path=SubmissionPath.RPC, signature=Signature.default())
        assert outcome.state == SubmissionState.UNKNOWN
        assert outcome.error is None
        assert outcome.destinations == 0


# ============================================================================
# Transaction Builder Tests
# ============================================================================


class TestTransactionBuilder:
    def test_deterministic_signature(self):
        a = build_test_transaction(BLOCKHASH, SIGNER, "quic")
        b = build_test_transaction(BLOCKHASH, SIGNER, "quic")
        assert a.signatures[0] == b.signatures[0]
        assert bytes(a) == bytes(b)

    def test_tags_give_distinct_signatures(self):
        rpc_tx = build_test_transaction(BLOCKHASH, SIGNER, "rpc_")
        quic_tx = build_test_transaction(BLOCKHASH, SIGNER, "quic")
        assert rpc_tx.signatures[0] != quic_tx.signatures[0]
        assert rpc_tx.message.recent_blockhash == quic_tx.message.recent_blockhash

    def test_str_and_bytes_tags_match(self):
        a = build_test_transaction(BLOCKHASH, SIGNER, "warm")
        b = build_test_transaction(BLOCKHASH, SIGNER, b"warm")
        assert a.signatures[0] == b.signatures[0]

    def test_memo_instruction_layout(self):
        tx = build_test_transaction(BLOCKHASH, SIGNER, "hello")
        message = tx.message
        assert message.account_keys[0] == SIGNER.pubkey()
        assert message.recent_blockhash == BLOCKHASH
        assert len(message.instructions) == 1

        ix = message.instructions[0]
        assert message.account_keys[ix.program_id_index] == MEMO_PROGRAM_ID
        assert bytes(ix.data) == b"hello"
        assert len(tx.signatures) == 1

    def test_build_memo(self):
        ix = build_memo(b"tag", [SIGNER.pubkey()])
        assert ix.program_id == MEMO_PROGRAM_ID
        assert bytes(ix.data) == b"tag"
        assert len(ix.accounts) == 1
        assert ix.accounts[0].pubkey == SIGNER.pubkey()
        assert ix.accounts[0].is_signer is True
        assert ix.accounts[0].is_writable is False

    def test_different_blockhash_changes_signature(self):
        a = build_test_transaction(BLOCKHASH, SIGNER, "quic")
        b = build_test_transaction(Hash(bytes([8] * 32)), SIGNER, "quic")
        assert a.signatures[0] != b.signatures[0]


# ============================================================================
# Report Tests
# ============================================================================


class TestFormatReport:
    def test_same_slot_reports_indices(self):
        report = RaceReport(
            rpc=_outcome(SubmissionPath.RPC),
            quic=_outcome(SubmissionPath.QUIC),
            rpc_slot=250_000_000,
            quic_slot=250_000_000,
            rpc_index=4,
            quic_index=1,
            transaction_count=10,
        )
        lines = format_report(report)
        assert "both txs executed in slot: 250000000" in lines
        assert "+ rpc tx_index in slot 4/10" in lines
        assert "+ quic tx_index in slot 1/10" in lines
        assert lines[-1] == "quic tx landed first"

    def test_different_slots_reports_slots_only(self):
        report = RaceReport(
            rpc=_outcome(SubmissionPath.RPC),
            quic=_outcome(SubmissionPath.QUIC),
            rpc_slot=101,
            quic_slot=100,
        )
        lines = format_report(report)
        assert "rpc_tx_slot: 101" in lines
        assert "quic_tx_slot: 100" in lines
        assert not any("tx_index" in line for line in lines)
        assert landed_first(report) == SubmissionPath.QUIC

    def test_missing_slot_is_not_found(self):
        report = RaceReport(
            rpc=_outcome(SubmissionPath.RPC),
            quic=_outcome(SubmissionPath.QUIC, SubmissionState.FAILED),
            rpc_slot=100,
        )
        lines = format_report(report)
        assert "quic_tx_slot: not found" in lines
        assert landed_first(report) is None

    def test_block_error_line(self):
        report = RaceReport(
            rpc=_outcome(SubmissionPath.RPC),
            quic=_outcome(SubmissionPath.QUIC),
            rpc_slot=7,
            quic_slot=7,
            block_error="Failed to fetch block 7: boom",
        )
        lines = format_report(report)
        assert "both txs executed in slot: 7" in lines
        assert "error fetching block" in lines

    def test_index_missing_from_block(self):
        report = RaceReport(
            rpc=_outcome(SubmissionPath.RPC),
            quic=_outcome(SubmissionPath.QUIC),
            rpc_slot=7,
            quic_slot=7,
            rpc_index=None,
            quic_index=0,
            transaction_count=3,
        )
        lines = format_report(report)
        assert "+ rpc tx_index in slot not found/3" in lines
        assert "+ quic tx_index in slot 0/3" in lines
        assert landed_first(report) is None

    def test_outcome_lines(self):
        failed = SubmissionOutcome(
            path=SubmissionPath.RPC,
            signature=Signature.default(),
            state=SubmissionState.FAILED,
            error="RPC error -32002: blockhash not found",
        )
        report = RaceReport(rpc=failed, quic=_outcome(SubmissionPath.QUIC))
        lines = format_report(report)
        assert lines[0] == "+ rpc submission: failed (RPC error -32002: blockhash not found)"
        assert lines[1] == "+ quic submission: sent in 1.5 ms to 2 leader(s)"
