"""
txrace — Report formatting
"""

from __future__ import annotations

from typing import List, Optional

from .types import RaceReport, SubmissionOutcome, SubmissionPath, SubmissionState


def _value(v: Optional[int]) -> str:
    return "not found" if v is None else str(v)


def _format_outcome(outcome: SubmissionOutcome) -> str:
    label = outcome.path.value
    if outcome.state == SubmissionState.SENT:
        line = f"+ {label} submission: sent in {outcome.elapsed_ms:.1f} ms"
        if outcome.path == SubmissionPath.QUIC:
            line += f" to {outcome.destinations} leader(s)"
        return line
    return f"+ {label} submission: {outcome.state.value} ({outcome.error or 'no detail'})"


def landed_first(report: RaceReport) -> Optional[SubmissionPath]:
    """The path whose transaction landed earlier, if that is known."""
    if report.rpc_slot is None or report.quic_slot is None:
        return None
    if report.rpc_slot != report.quic_slot:
        return SubmissionPath.RPC if report.rpc_slot < report.quic_slot else SubmissionPath.QUIC
    if report.rpc_index is None or report.quic_index is None:
        return None
    return SubmissionPath.RPC if report.rpc_index < report.quic_index else SubmissionPath.QUIC


def format_report(report: RaceReport) -> List[str]:
    lines = [_format_outcome(report.rpc), _format_outcome(report.quic)]

    if report.same_slot:
        lines.append(f"both txs executed in slot: {report.rpc_slot}")
        if report.block_error is not None or report.transaction_count is None:
            lines.append("error fetching block")
        else:
            total = report.transaction_count
            lines.append(f"+ rpc tx_index in slot {_value(report.rpc_index)}/{total}")
            lines.append(f"+ quic tx_index in slot {_value(report.quic_index)}/{total}")
    else:
        lines.append(f"rpc_tx_slot: {_value(report.rpc_slot)}")
        lines.append(f"quic_tx_slot: {_value(report.quic_slot)}")

    first = landed_first(report)
    if first is not None:
        lines.append(f"{first.value} tx landed first")
    return lines
