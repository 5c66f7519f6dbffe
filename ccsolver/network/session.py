"""
Auction Session - one connection to the auction feed.

The session registers the solver, then processes feed messages one at a
time in arrival order:

    code 1  new intent       -> quote, bid iff offer > user minimum, remember
    code 4  auction result   -> won: hand to the orchestrator as a task
                                lost: forget
    code 0/2/3               -> logged

Settlements run as independent tasks so a slow settlement never blocks
quoting of later intents. When the feed closes the connection the session
waits for in-flight settlements before returning; nothing is cancelled.
"""

import asyncio
from typing import Any, Iterable, List, Optional, Set

from ccsolver.core.errors import (
    ConfigError,
    IntentDesync,
    ProtocolError,
    QuoteError,
    RegistrationRejected,
    UnsupportedOperationError,
)
from ccsolver.core.execution.orchestrator import ExecutionOrchestrator, SettlementReport
from ccsolver.core.intent.intent import ChainId, IntentRecord, IntentState
from ccsolver.core.intent.store import IntentStore
from ccsolver.core.quoting.engine import QuotingEngine
from ccsolver.network.channel import ChannelError, MessageChannel
from ccsolver.network.identity import MessageSigner
from ccsolver.network.protocol import (
    Envelope,
    MessageCode,
    bid_message,
    decode_message,
    error_message,
    parse_auction_result,
    parse_new_intent,
    registration_message,
    serialize,
    settlement_message,
)
from ccsolver.utils.logger import get_logger

logger = get_logger("session")


class AuctionSession:
    """
    Drives the solver's side of the auction protocol.

    Args:
        channel: Transport to the feed
        signer: Signs every outbound envelope
        solver_id: Identifier registered with the feed
        solver_addresses: Payout addresses sent at registration
        store: Records of intents the solver bid on
        engine: Computes offers
        orchestrator: Settles won intents
        enabled_chains: Intents touching other ledgers are ignored
        bid_ttl: Seconds an unanswered bid is kept before it is dropped
        janitor_interval: Seconds between expiry sweeps
        report_settlements: Send a signed report to the feed after each settlement
        registration_timeout: Seconds to wait for the feed's reply to registration
    """

    def __init__(
        self,
        channel: MessageChannel,
        signer: MessageSigner,
        solver_id: str,
        solver_addresses: List[str],
        store: IntentStore,
        engine: QuotingEngine,
        orchestrator: ExecutionOrchestrator,
        enabled_chains: Optional[Iterable[ChainId]] = None,
        bid_ttl: float = 300.0,
        janitor_interval: float = 30.0,
        report_settlements: bool = False,
        registration_timeout: float = 10.0,
    ):
        self.channel = channel
        self.signer = signer
        self.solver_id = solver_id
        self.solver_addresses = list(solver_addresses)
        self.store = store
        self.engine = engine
        self.orchestrator = orchestrator
        self.enabled_chains = set(enabled_chains) if enabled_chains is not None else set(ChainId)
        self.bid_ttl = bid_ttl
        self.janitor_interval = janitor_interval
        self.report_settlements = report_settlements
        self.registration_timeout = registration_timeout

        self.registered = False
        self._awaiting_reply = False
        self._pending: List[str] = []
        self._settlements: Set[asyncio.Task] = set()
        self._janitor_task: Optional[asyncio.Task] = None

        self.intents_seen = 0
        self.bids_sent = 0
        self.auctions_won = 0
        self.auctions_lost = 0

    # =========================================================================
    # Connection
    # =========================================================================

    async def connect_and_register(self) -> None:
        """
        Open the channel and register the solver.

        If the feed answers within ``registration_timeout`` the answer is
        checked: an error reply rejects the registration, anything other
        than a confirmation is kept for the receive loop.

        Raises:
            ChannelError: if the channel cannot be opened
            RegistrationRejected: if the feed answers with an error
        """
        await self.channel.open()
        await self.send(registration_message(self.solver_id, self.solver_addresses))
        logger.info(f"Registration sent for solver {self.solver_id} ({', '.join(self.solver_addresses)})")

        try:
            reply = await asyncio.wait_for(self.channel.receive(), timeout=self.registration_timeout)
        except asyncio.TimeoutError:
            logger.warning("No reply to registration yet, continuing")
            self._awaiting_reply = True
            return

        if reply is None:
            raise ChannelError("Auction feed closed the connection during registration")

        try:
            code, msg = decode_message(reply)
        except ProtocolError:
            self._pending.append(reply)
            return

        if code == MessageCode.ERROR:
            raise RegistrationRejected(f"Registration rejected: {msg}")
        if code == MessageCode.REGISTERED:
            self._mark_registered(msg)
        else:
            self._pending.append(reply)

    def _mark_registered(self, msg: Any) -> None:
        self.registered = True
        logger.info(f"Registered with auction feed: {msg}")

    async def send(self, envelope: Envelope) -> None:
        """Sign and send an envelope."""
        signed = self.signer.sign_envelope(envelope)
        await self.channel.send(serialize(signed))

    async def close(self) -> None:
        await self.channel.close()

    # =========================================================================
    # Receive loop
    # =========================================================================

    async def run(self) -> None:
        """
        Process feed messages until the channel closes.

        Malformed messages are logged and skipped. On exit, in-flight
        settlements are awaited.

        Raises:
            RegistrationRejected: if the late reply to registration is an error
            ChannelError: if the channel fails while sending
        """
        self._janitor_task = asyncio.create_task(self._janitor())
        try:
            while True:
                raw = self._pending.pop(0) if self._pending else await self.channel.receive()
                if raw is None:
                    logger.info("Auction feed connection closed, session ending")
                    break
                try:
                    await self.on_message(raw)
                except (RegistrationRejected, ChannelError):
                    raise
                except ProtocolError as e:
                    logger.warning(f"Protocol error: {e}")
        finally:
            self._janitor_task.cancel()
            try:
                await self._janitor_task
            except asyncio.CancelledError:
                pass
            self._janitor_task = None
            await self.wait_for_settlements()

    async def on_message(self, raw: Any) -> None:
        """
        Dispatch one feed message.

        Raises:
            ProtocolError: malformed message, or a win for an unknown intent
            RegistrationRejected: an error answering a registration that
                timed out waiting for its reply
        """
        code, msg = decode_message(raw)
        registration_reply, self._awaiting_reply = self._awaiting_reply, False

        if code == MessageCode.INTENT:
            await self._on_new_intent(msg)
        elif code == MessageCode.AUCTION_RESULT:
            await self._on_auction_result(msg)
        elif code == MessageCode.ERROR:
            if registration_reply and not self.registered:
                raise RegistrationRejected(f"Registration rejected: {msg}")
            logger.warning(f"Auction feed error: {msg}")
        elif code == MessageCode.BID:
            logger.debug(f"Rollup ack: {msg}")
        elif code == MessageCode.REGISTERED:
            self._mark_registered(msg)

    async def _on_new_intent(self, msg: Any) -> None:
        new = parse_new_intent(msg)
        intent = new.intent
        self.intents_seen += 1

        if intent.src_chain not in self.enabled_chains or intent.dst_chain not in self.enabled_chains:
            logger.info(f"Skipping {intent!r}: chain not enabled")
            return

        try:
            offer = await self.engine.quote(intent)
            minimum = intent.min_amount_out
        except UnsupportedOperationError as e:
            logger.info(f"Skipping {intent!r}: {e}")
            return
        except (QuoteError, ConfigError) as e:
            logger.warning(f"Cannot quote {intent!r}: {e}")
            return

        if offer <= minimum:
            logger.info(f"No bid on {new.intent_id}: offer {offer} <= minimum {minimum}")
            return

        await self.send(bid_message(new.intent_id, self.solver_id, offer))
        await self.store.insert(IntentRecord(intent=intent, bid_amount=offer))
        self.bids_sent += 1
        logger.info(f"Bid {offer} on {new.intent_id} (minimum {minimum})")

    async def _on_auction_result(self, msg: Any) -> None:
        result = parse_auction_result(msg)

        if not result.won:
            self.auctions_lost += 1
            record = await self.store.remove(result.intent_id)
            if record is None:
                logger.debug(f"Lost auction {result.intent_id} we held no record for: {result.msg}")
            else:
                logger.info(f"Lost auction {result.intent_id}: {result.msg}")
            return

        won = await self.store.update_state(result.intent_id, IntentState.WON, auction_amount=result.amount)
        if won is None:
            raise IntentDesync(result.intent_id)

        self.auctions_won += 1
        logger.info(f"Won auction {result.intent_id} at {won.settle_amount}")
        self.dispatch_settlement(won)
        await self.store.remove(result.intent_id)

    # =========================================================================
    # Settlement tasks
    # =========================================================================

    def dispatch_settlement(self, record: IntentRecord) -> asyncio.Task:
        task = asyncio.create_task(self._settle(record))
        self._settlements.add(task)
        task.add_done_callback(self._settlements.discard)
        return task

    @property
    def in_flight(self) -> int:
        return len(self._settlements)

    async def wait_for_settlements(self) -> None:
        if not self._settlements:
            return
        logger.info(f"Waiting for {len(self._settlements)} settlement(s) to finish")
        await asyncio.gather(*list(self._settlements), return_exceptions=True)

    async def _settle(self, record: IntentRecord) -> Optional[SettlementReport]:
        try:
            report = await self.orchestrator.settle(record.with_state(IntentState.SETTLING))
        except Exception:
            logger.exception(f"[{record.intent_id}] Settlement task crashed, MANUAL RECONCILIATION REQUIRED")
            return None

        if self.report_settlements:
            await self._report(report)
        return report

    async def _report(self, report: SettlementReport) -> None:
        if report.outcome in (IntentState.SETTLED_OK, IntentState.SETTLED_DEGRADED):
            envelope = settlement_message(report.intent_id, self.solver_id, report.last_tx_ref or "")
        else:
            envelope = error_message(self.solver_id, f"Transaction failed: {report.error}", report.intent_id)
        try:
            await self.send(envelope)
        except ChannelError as e:
            logger.warning(f"[{report.intent_id}] Could not report settlement: {e}")

    # =========================================================================
    # Expiry
    # =========================================================================

    async def _janitor(self) -> None:
        while True:
            await asyncio.sleep(self.janitor_interval)
            await self.sweep()

    async def sweep(self) -> List[IntentRecord]:
        """Drop bids that never got an auction result."""
        expired = await self.store.expire(self.bid_ttl)
        for record in expired:
            logger.info(f"Bid on {record.intent_id} expired after {self.bid_ttl:.0f}s without a result")
        return expired

    def stats(self) -> dict:
        return {
            "registered": self.registered,
            "intents_seen": self.intents_seen,
            "bids_sent": self.bids_sent,
            "auctions_won": self.auctions_won,
            "auctions_lost": self.auctions_lost,
            "settlements_in_flight": self.in_flight,
            "store": self.store.stats(),
        }
