"""Two-phase transaction confirmation.

Confirmation flow:
1. SUBMITTED - the transaction hash is known, broadcast already happened
2. CONFIRMING_PUBLIC - poll for the receipt on the public pool, bounded by
   a hard timeout
3. CONFIRMING_BACKUP - on timeout or error, poll the backup endpoint first
   and the public endpoints after it, with no timeout of our own
4. CONFIRMED, or UNCONFIRMED_BUT_ACCEPTED when phase 2 fails too

UNCONFIRMED_BUT_ACCEPTED is not an error: the network accepted the
transaction, only tracking its inclusion failed. Confirmation never raises
for endpoint failures; caller cancellation still propagates.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from rpcshield.transport.base import DEFAULT_POLL_INTERVAL, RpcProvider

logger = logging.getLogger(__name__)

DEFAULT_CONFIRMATION_TIMEOUT = 15.0


class ConfirmationState(str, Enum):
    """Lifecycle of one transaction confirmation."""
    SUBMITTED = "submitted"
    CONFIRMING_PUBLIC = "confirming_public"
    CONFIRMING_BACKUP = "confirming_backup"
    CONFIRMED = "confirmed"
    UNCONFIRMED_BUT_ACCEPTED = "unconfirmed_but_accepted"


@dataclass
class ConfirmationResult:
    """Terminal outcome of a confirmation."""
    tx_hash: str
    state: ConfirmationState
    receipt: Optional[dict] = None
    phase: Optional[int] = None     # 1 or 2 when confirmed
    error: Optional[str] = None     # why tracking failed

    @property
    def confirmed(self) -> bool:
        return self.state == ConfirmationState.CONFIRMED

    @property
    def succeeded(self) -> Optional[bool]:
        """Receipt status (True = success, False = reverted), None if unknown."""
        if self.receipt is None:
            return None
        status = self.receipt.get("status")
        if status is None:
            return None
        return int(status, 16) == 1 if isinstance(status, str) else bool(status)


class TransactionConfirmation:
    """State machine for confirming one broadcast transaction."""

    def __init__(
        self,
        tx_hash: str,
        public: Optional[RpcProvider],
        backup: Optional[RpcProvider],
        timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        """Initialize confirmation.

        Args:
            tx_hash: Hash of the broadcast transaction
            public: Public endpoint pool for phase 1 (None = skip phase 1)
            backup: Backup-first pool for phase 2 (None = no phase 2)
            timeout: Phase 1 timeout in seconds
            poll_interval: Delay between receipt polls
        """
        self.tx_hash = tx_hash
        self.public = public
        self.backup = backup
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.state = ConfirmationState.SUBMITTED
        self.history: list[ConfirmationState] = [self.state]

    def _transition(self, state: ConfirmationState) -> None:
        logger.debug(f"Confirmation {self.tx_hash}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    async def run(self) -> ConfirmationResult:
        """Drive the confirmation to a terminal state."""
        if self.public is not None:
            self._transition(ConfirmationState.CONFIRMING_PUBLIC)
            try:
                receipt = await asyncio.wait_for(
                    self.public.wait_for_receipt(self.tx_hash, self.poll_interval),
                    timeout=self.timeout,
                )
                return self._confirmed(receipt, phase=1)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Public confirmation of {self.tx_hash} timed out after "
                    f"{self.timeout:g}s, switching to backup endpoints"
                )
            except Exception as e:
                logger.warning(
                    f"Public confirmation of {self.tx_hash} failed, "
                    f"switching to backup endpoints: {e}"
                )

        if self.backup is None:
            return self._unconfirmed("no backup endpoints configured")

        self._transition(ConfirmationState.CONFIRMING_BACKUP)
        try:
            receipt = await self.backup.wait_for_receipt(self.tx_hash, self.poll_interval)
        except Exception as e:
            logger.error(f"Backup confirmation of {self.tx_hash} failed: {e}")
            return self._unconfirmed(str(e))
        return self._confirmed(receipt, phase=2)

    def _confirmed(self, receipt: dict, phase: int) -> ConfirmationResult:
        self._transition(ConfirmationState.CONFIRMED)
        logger.info(
            f"Transaction {self.tx_hash} confirmed in block "
            f"{receipt.get('blockNumber')} (phase {phase})"
        )
        return ConfirmationResult(
            tx_hash=self.tx_hash,
            state=self.state,
            receipt=receipt,
            phase=phase,
        )

    def _unconfirmed(self, reason: str) -> ConfirmationResult:
        self._transition(ConfirmationState.UNCONFIRMED_BUT_ACCEPTED)
        logger.warning(
            f"Could not confirm {self.tx_hash}, transaction was accepted: {reason}"
        )
        return ConfirmationResult(
            tx_hash=self.tx_hash,
            state=self.state,
            error=reason,
        )
