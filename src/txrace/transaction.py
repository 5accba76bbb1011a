"""
txrace — Test transaction builder

Builds the signed single-memo transactions raced through both paths.
"""

from __future__ import annotations

from typing import Sequence, Union

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

# SPL Memo program (v2)
MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")


def build_memo(memo: bytes, signer_pubkeys: Sequence[Pubkey]) -> Instruction:
    """Build a memo instruction; every listed pubkey must sign."""
    return Instruction(
        program_id=MEMO_PROGRAM_ID,
        accounts=[AccountMeta(pubkey, is_signer=True, is_writable=False) for pubkey in signer_pubkeys],
        data=memo,
    )


def build_test_transaction(
    recent_blockhash: Hash,
    signer: Keypair,
    tag: Union[str, bytes],
) -> Transaction:
    """Build and sign a memo transaction tagged with ``tag``.

    The signer pays the fee and is the memo's only account. Signing is
    local and deterministic, so ``tx.signatures[0]`` is known before the
    transaction is sent anywhere.
    """
    data = tag.encode("utf-8") if isinstance(tag, str) else bytes(tag)
    payer = signer.pubkey()
    message = Message([build_memo(data, [payer])], payer)
    return Transaction([signer], message, recent_blockhash)
