"""Ledger client — web3.py access to the contributions contract.

Writes (``submit_contribution``) sign a transaction with the contributor's
key, wait for the receipt within ``confirmation_timeout`` and read the
assigned id from the ``ContributionAdded`` event in the receipt.

Reads are plain ``call()``s. Every RPC request is bounded by the HTTP
provider's ``request_timeout``, so an unreachable node surfaces as
``LedgerUnavailable`` instead of hanging. Reads never retry.
"""

from __future__ import annotations

import logging
import threading
import warnings
from pathlib import Path
from typing import Any

import requests
from eth_account import Account
from web3 import Web3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    TimeExhausted,
    Web3Exception,
)
from web3.logs import DISCARD

from ledgerkb.config import LedgerCfg
from ledgerkb.errors import (
    ContributionIdUnresolved,
    InvalidCredential,
    LedgerError,
    LedgerSubmissionFailed,
    LedgerUnavailable,
    NotFound,
)
from ledgerkb.ledger.abi import CONTRACT_ABI, CONTRIBUTION_ADDED_EVENT
from ledgerkb.ledger.deployments import resolve_contract_address
from ledgerkb.ledger.models import Contribution

logger = logging.getLogger(__name__)

UNRESOLVED_ID = 0
_ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
_TRANSPORT_ERRORS = (requests.exceptions.RequestException, ConnectionError, TimeoutError)


class LedgerClient:
    """Submit and read contributions on the ledger.

    Args:
        w3: Connected Web3 instance.
        contract: Contract object bound to the deployed address and ABI.
        confirmation_timeout: Seconds to wait for a transaction receipt.
        poll_latency: Seconds between receipt polls.
    """

    def __init__(
        self,
        w3: Web3,
        contract: Any,
        confirmation_timeout: float = 120.0,
        poll_latency: float = 0.5,
    ) -> None:
        self._w3 = w3
        self._contract = contract
        self.confirmation_timeout = confirmation_timeout
        self.poll_latency = poll_latency
        # One lock per sending account: nonce lookup and send must not interleave.
        self._send_locks: dict[str, threading.Lock] = {}
        self._send_locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, cfg: LedgerCfg, base_dir: Path | None = None) -> LedgerClient:
        """Build a client for the node and contract named in *cfg*."""
        w3 = Web3(
            Web3.HTTPProvider(cfg.rpc_url, request_kwargs={"timeout": cfg.request_timeout})
        )
        address = Web3.to_checksum_address(resolve_contract_address(cfg, base_dir))
        contract = w3.eth.contract(address=address, abi=CONTRACT_ABI)
        return cls(
            w3,
            contract,
            confirmation_timeout=cfg.confirmation_timeout,
            poll_latency=cfg.poll_latency,
        )

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    @staticmethod
    def contributor_address(credential: str) -> str:
        """Return the address controlled by *credential*.

        Raises:
            InvalidCredential: *credential* is not a valid private key.
        """
        try:
            return Account.from_key(credential).address
        except (ValueError, TypeError) as exc:
            raise InvalidCredential("Contributor credential is not a valid private key.") from exc

    def submit_contribution(self, credential: str, source_url: str, tags: list[str]) -> int:
        """Record a contribution and return its ledger-assigned id.

        Blocks until the transaction is confirmed. If the receipt carries no
        ``ContributionAdded`` event, a ``ContributionIdUnresolved`` warning is
        emitted and ``0`` is returned; the contribution is still recorded.

        Raises:
            LedgerSubmissionFailed: Invalid credential, rejected, reverted,
                or not confirmed within ``confirmation_timeout``.
            LedgerUnavailable: The node could not be reached before sending.
        """
        try:
            account = Account.from_key(credential)
        except (ValueError, TypeError) as exc:
            raise LedgerSubmissionFailed("Invalid contributor credential.") from exc

        try:
            with self._send_lock(account.address):
                tx = self._contract.functions.addContribution(
                    source_url, list(tags)
                ).build_transaction(
                    {
                        "from": account.address,
                        "nonce": self._w3.eth.get_transaction_count(account.address, "pending"),
                        "chainId": self._w3.eth.chain_id,
                    }
                )
                signed = account.sign_transaction(tx)
                tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as exc:
            raise LedgerSubmissionFailed(f"Ledger rejected the contribution: {exc}") from exc
        except _TRANSPORT_ERRORS as exc:
            raise LedgerUnavailable(f"Ledger node unreachable: {exc}") from exc
        except (Web3Exception, ValueError) as exc:
            raise LedgerSubmissionFailed(f"Ledger rejected the transaction: {exc}") from exc

        tx_hex = Web3.to_hex(tx_hash)
        logger.info("Contribution transaction sent: %s", tx_hex)

        try:
            receipt = self._w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.confirmation_timeout,
                poll_latency=self.poll_latency,
            )
        except TimeExhausted as exc:
            raise LedgerSubmissionFailed(
                f"Transaction {tx_hex} not confirmed within {self.confirmation_timeout:g}s.",
                tx_hash=tx_hex,
            ) from exc
        except (*_TRANSPORT_ERRORS, Web3Exception) as exc:
            raise LedgerSubmissionFailed(
                f"Lost contact with the ledger while waiting for {tx_hex}: {exc}",
                tx_hash=tx_hex,
            ) from exc

        if receipt["status"] != 1:
            raise LedgerSubmissionFailed(f"Transaction {tx_hex} reverted.", tx_hash=tx_hex)
        logger.info("Transaction %s confirmed in block %s", tx_hex, receipt["blockNumber"])

        return self._resolve_contribution_id(receipt, tx_hex)

    def _send_lock(self, address: str) -> threading.Lock:
        with self._send_locks_guard:
            return self._send_locks.setdefault(address, threading.Lock())

    def _resolve_contribution_id(self, receipt: Any, tx_hex: str) -> int:
        event = getattr(self._contract.events, CONTRIBUTION_ADDED_EVENT)()
        for log in event.process_receipt(receipt, errors=DISCARD):
            if log["event"] == CONTRIBUTION_ADDED_EVENT:
                return int(log["args"]["contributionId"])

        message = f"No {CONTRIBUTION_ADDED_EVENT} event in receipt of {tx_hex}; returning id 0."
        logger.warning(message)
        warnings.warn(message, ContributionIdUnresolved, stacklevel=3)
        return UNRESOLVED_ID

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def get_contribution(self, contribution_id: int) -> Contribution:
        """Return the contribution with *contribution_id*.

        Raises:
            NotFound: The id was never assigned.
            LedgerUnavailable: The node could not be reached.
        """
        if contribution_id < 1:
            raise NotFound(contribution_id)
        try:
            raw = self._call("getContribution", contribution_id, allow_revert=True)
        except ContractLogicError as exc:
            raise NotFound(contribution_id) from exc
        contribution = _decode(contribution_id, raw)
        if contribution.contributor_address == _ZERO_ADDRESS:
            raise NotFound(contribution_id)
        return contribution

    def get_total_contributions(self) -> int:
        return int(self._call("getTotalContributions"))

    def get_contributions_by_contributor(self, address: str) -> list[Contribution]:
        """Return *address*'s contributions ordered by id; [] if it has none.

        Ids the ledger lists but cannot return are skipped with a warning.
        """
        ids = self._call("getContributionsByContributor", Web3.to_checksum_address(address))
        contributions: list[Contribution] = []
        for contribution_id in sorted(int(i) for i in ids):
            try:
                contributions.append(self.get_contribution(contribution_id))
            except NotFound:
                logger.warning(
                    "Contribution %d listed for %s could not be read; skipped",
                    contribution_id,
                    address,
                )
        return contributions

    def get_all_contributions(self) -> list[Contribution]:
        """Return every contribution; ids follow ledger order starting at 1."""
        records = self._call("getAllContributions")
        return [_decode(i + 1, raw) for i, raw in enumerate(records)]

    def _call(self, function: str, *args: Any, allow_revert: bool = False) -> Any:
        try:
            return getattr(self._contract.functions, function)(*args).call()
        except ContractLogicError as exc:
            if allow_revert:
                raise
            raise LedgerError(f"{function}() reverted: {exc}") from exc
        except BadFunctionCallOutput as exc:
            raise LedgerUnavailable(
                f"{function}() returned no data; is the contract deployed at "
                f"{self._contract.address}?"
            ) from exc
        except (*_TRANSPORT_ERRORS, Web3Exception) as exc:
            raise LedgerUnavailable(f"Ledger node unreachable during {function}(): {exc}") from exc


def _decode(contribution_id: int, raw: Any) -> Contribution:
    """Build a Contribution from the contract's (address, timestamp, url, tags) tuple."""
    contributor, timestamp, url, tags = raw
    return Contribution(
        id=contribution_id,
        contributor_address=str(contributor),
        timestamp=int(timestamp),
        source_url=str(url),
        tags=tuple(str(t) for t in tags),
    )
