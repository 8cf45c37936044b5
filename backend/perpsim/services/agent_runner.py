"""
Automation agent runner.

One runner per process drives every running agent from two asyncio loops:
a signal scan (opens new agent positions) and a faster exit check (TP/SL and
liquidation for open agent positions). Each user's work runs in a worker
thread with its own DB session; one user's failure is logged and never stops
the loop or the other users in the same tick.
"""
import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from perpsim.core.config import settings
from perpsim.core.exceptions import TradingError
from perpsim.database import SessionLocal, atomic
from perpsim.models.agent_config import AgentConfig, AgentStatusEnum, AgentStrategyEnum
from perpsim.models.agent_event import AgentEventType, AUTOMATION_AGENT_ID
from perpsim.models.position import PositionSideEnum, PositionStatusEnum
from perpsim.services import event_log, ledger, position_engine
from perpsim.services.event_log import display_symbol
from perpsim.services.market_data_manager import market_data_manager
from perpsim.services.signal_engine import SchedulerState, generate_signal
from perpsim.utils.timeutils import as_utc, reporting_day_start, utcnow

logger = logging.getLogger(__name__)

MIN_TRADE_INTERVAL_SECONDS = 120
FIRST_TRADE_GUARANTEE_SECONDS = 240
FORCE_AFTER_ATTEMPTS = 4

MIN_AGENT_MARGIN = 10.0
MAX_AGENT_LEVERAGE = 25
BALANCE_CAP_RATIO = 0.9
RANDOM_MARGIN_CHOICES = (100.0, 250.0, 300.0)

TAKE_PROFIT_MULTIPLIER = {PositionSideEnum.LONG.value: 1.05, PositionSideEnum.SHORT.value: 0.95}
STOP_LOSS_MULTIPLIER = {PositionSideEnum.LONG.value: 0.97, PositionSideEnum.SHORT.value: 1.03}

# Global lock so concurrent startup hooks cannot spawn duplicate loops
_start_lock = asyncio.Lock()


class ScanOutcome:
    """Result codes of one signal scan for one user"""
    INACTIVE = "inactive"
    COOLDOWN = "cooldown"
    NO_BALANCE = "no_balance"
    MAX_POSITIONS = "max_positions"
    NO_PAIRS = "no_pairs"
    DAILY_LOSS_LIMIT = "daily_loss_limit"
    NO_CAPITAL = "no_capital"
    NO_PRICE = "no_price"
    NO_SIGNAL = "no_signal"
    MARGIN_TOO_SMALL = "margin_too_small"
    REJECTED = "rejected"
    OPENED = "opened"


@dataclass
class TradePlan:
    token_id: str
    side: str
    price: float
    margin: float
    leverage: int
    take_profit: float
    stop_loss: float


class AgentRunner:
    """Timer-driven task spawner for all users' automation agents"""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        prices=None,
        state: Optional[SchedulerState] = None,
        rng: Optional[random.Random] = None,
        scan_interval: Optional[float] = None,
        exit_interval: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.prices = prices or market_data_manager
        self.state = state or SchedulerState()
        self.rng = rng or random.Random()
        self.scan_interval = scan_interval or settings.AGENT_SCAN_INTERVAL_SECONDS
        self.exit_interval = exit_interval or settings.AGENT_EXIT_CHECK_INTERVAL_SECONDS
        self.running = False
        self._scan_task: Optional[asyncio.Task] = None
        self._exit_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """Start both loops. Calling start() on a running runner does nothing."""
        async with _start_lock:
            if self.running and self._scan_task and not self._scan_task.done():
                logger.warning("[AGENT] Runner already running, ignoring start() call")
                return

            self.running = True
            self._scan_task = asyncio.create_task(
                self._run_loop("signal scan", self.scan_interval, self.run_signal_scan)
            )
            self._exit_task = asyncio.create_task(
                self._run_loop("exit check", self.exit_interval, self.run_exit_check)
            )
            logger.info(
                f"[AGENT] Runner started (scan every {self.scan_interval}s, exit check every {self.exit_interval}s)"
            )

    async def stop(self):
        """Tear down both loops; per-user work already in a thread finishes on its own."""
        if not self.running and self._scan_task is None and self._exit_task is None:
            return
        self.running = False
        tasks = [t for t in (self._scan_task, self._exit_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._scan_task = None
        self._exit_task = None
        logger.info("[AGENT] Runner stopped")

    async def _run_loop(self, name: str, interval: float, tick):
        while self.running:
            try:
                await tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[AGENT] {name} tick failed: {e}", exc_info=True)
            await asyncio.sleep(interval)

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def running_user_ids_sync(self) -> List[int]:
        db = self.session_factory()
        try:
            return [config.user_id for config in ledger.list_running_agent_configs(db)]
        finally:
            db.close()

    async def _fan_out(self, name: str, worker):
        user_ids = await asyncio.to_thread(self.running_user_ids_sync)
        if not user_ids:
            return []
        results = await asyncio.gather(
            *(asyncio.to_thread(worker, user_id) for user_id in user_ids),
            return_exceptions=True,
        )
        for user_id, result in zip(user_ids, results):
            if isinstance(result, Exception):
                logger.error(f"[AGENT] {name} failed for user={user_id}: {result}", exc_info=result)
        return results

    async def run_signal_scan(self):
        return await self._fan_out("signal scan", self.process_agent_sync)

    async def run_exit_check(self):
        return await self._fan_out("exit check", self.check_exits_sync)

    # ------------------------------------------------------------------
    # Signal scan
    # ------------------------------------------------------------------

    def process_agent_sync(self, user_id: int, now: Optional[datetime] = None) -> str:
        db = self.session_factory()
        try:
            return self.process_agent(db, user_id, now)
        finally:
            db.close()

    def process_agent(self, db: Session, user_id: int, now: Optional[datetime] = None) -> str:
        """Run one signal scan for one user and return a ScanOutcome code"""
        now = as_utc(now) or utcnow()
        config = ledger.get_agent_config(db, user_id)
        if config is None or config.status != AgentStatusEnum.RUNNING.value:
            return ScanOutcome.INACTIVE

        last_run = as_utc(config.last_run_at)
        elapsed = (now - last_run).total_seconds() if last_run else None
        attempts = self.state.attempts(user_id)

        cooldown_elapsed = elapsed is None or elapsed >= MIN_TRADE_INTERVAL_SECONDS
        first_trade_due = elapsed is None or elapsed >= FIRST_TRADE_GUARANTEE_SECONDS
        force = first_trade_due or (cooldown_elapsed and attempts >= FORCE_AFTER_ATTEMPTS)

        if not cooldown_elapsed:
            if attempts % 2 == 0:
                self._scanning_event(db, user_id, "scanning markets... analyzing signals")
            self.state.increment_attempts(user_id)
            return ScanOutcome.COOLDOWN

        balance = float(ledger.get_balance(db, user_id).amount)
        if balance <= 0:
            return ScanOutcome.NO_BALANCE

        if ledger.count_open_positions(db, user_id, agent_only=True) >= config.max_open_positions:
            with atomic(db):
                ledger.touch_agent_last_run(db, user_id, now)
            self.state.reset_attempts(user_id)
            return ScanOutcome.MAX_POSITIONS

        pairs = list(config.allowed_pairs or [])
        if not pairs:
            return ScanOutcome.NO_PAIRS

        day_pnl = ledger.realized_pnl_since(db, user_id, reporting_day_start(now), agent_only=True)
        if day_pnl <= -float(config.max_loss_per_day):
            logger.info(f"[AGENT] user={user_id} hit daily loss limit ({day_pnl:.2f}), no new trades today")
            return ScanOutcome.DAILY_LOSS_LIMIT

        allowance = float(config.max_capital) - ledger.open_margin(db, user_id, agent_only=True)
        if allowance < MIN_AGENT_MARGIN:
            return ScanOutcome.NO_CAPITAL

        occupied = {p.token_id for p in ledger.get_positions(db, user_id, status=PositionStatusEnum.OPEN.value)}
        candidates = [pair for pair in pairs if pair not in occupied]
        selected = self.select_pair(db, candidates)
        if selected is None:
            logger.info(f"[AGENT] user={user_id}: no valid prices available for any allowed pair")
            return ScanOutcome.NO_PRICE
        token_id, price = selected

        history = self.state.observe(token_id, price)
        strategy = self.rng.choice(list(config.strategies or [AgentStrategyEnum.TREND.value]))
        signal = generate_signal(
            token_id,
            price,
            history,
            strategy,
            use_ema_filter=bool(config.use_ema_filter),
            use_rsi_filter=bool(config.use_rsi_filter),
            use_volatility_filter=bool(config.use_volatility_filter),
            force=force,
            rng=self.rng,
        )
        if signal is None:
            self._scanning_event(db, user_id, f"scanning markets... evaluating {display_symbol(token_id)} entry points")
            self.state.increment_attempts(user_id)
            return ScanOutcome.NO_SIGNAL

        plan = self.plan_trade(config, balance, allowance, token_id, signal.side, price)
        if plan is None:
            return ScanOutcome.MARGIN_TOO_SMALL

        try:
            position_engine.open_position(
                db,
                user_id,
                position_engine.OpenPositionRequest(
                    token_id=plan.token_id,
                    side=plan.side,
                    margin=plan.margin,
                    leverage=plan.leverage,
                    take_profit=plan.take_profit,
                    stop_loss=plan.stop_loss,
                    is_agent_trade=True,
                ),
                price=plan.price,
            )
        except TradingError as e:
            logger.warning(f"[AGENT] user={user_id} trade on {token_id} rejected: {e.message}")
            return ScanOutcome.REJECTED

        with atomic(db):
            ledger.touch_agent_last_run(db, user_id, now)
        self.state.reset_attempts(user_id)
        logger.info(
            f"[AGENT] opened {plan.side} for user={user_id}: {token_id} @ {plan.price} "
            f"strategy={signal.strategy} confidence={signal.confidence:.2f} forced={force}"
        )
        return ScanOutcome.OPENED

    def _scanning_event(self, db: Session, user_id: int, message: str) -> None:
        with atomic(db):
            event_log.append_event(db, user_id, AgentEventType.SCANNING, message, agent_id=AUTOMATION_AGENT_ID)

    def select_pair(self, db: Session, pairs: List[str]) -> Optional[Tuple[str, float]]:
        """Shuffle the pairs and return the first with a positive price.

        Tries the batch quote first, then one quote per pair, then the
        persisted token price.
        """
        if not pairs:
            return None
        shuffled = list(pairs)
        self.rng.shuffle(shuffled)

        batch = self.prices.get_batch_prices(shuffled, db=db)
        for pair in shuffled:
            ticker = batch.get(pair)
            if ticker and ticker.price > 0:
                return pair, ticker.price

        for pair in shuffled:
            ticker = self.prices.get_price(pair, db=db)
            if ticker and ticker.price > 0:
                return pair, ticker.price

        tokens = ledger.get_tokens(db, shuffled)
        for pair in shuffled:
            token = tokens.get(pair)
            if token is not None and token.current_price is not None and float(token.current_price) > 0:
                logger.info(f"[AGENT] using persisted price for {pair}: ${float(token.current_price)}")
                return pair, float(token.current_price)
        return None

    def plan_trade(
        self,
        config: AgentConfig,
        balance: float,
        allowance: float,
        token_id: str,
        side: str,
        price: float,
    ) -> Optional[TradePlan]:
        max_margin = float(config.max_margin_per_trade)
        margin = max_margin
        if config.use_random_margin:
            margin = min(self.rng.choice(RANDOM_MARGIN_CHOICES), max_margin)
        margin = min(margin, allowance)
        if margin > balance:
            margin = balance * BALANCE_CAP_RATIO
        if margin < MIN_AGENT_MARGIN:
            return None

        return TradePlan(
            token_id=token_id,
            side=side,
            price=price,
            margin=margin,
            leverage=min(int(config.max_leverage), MAX_AGENT_LEVERAGE),
            take_profit=price * TAKE_PROFIT_MULTIPLIER[side],
            stop_loss=price * STOP_LOSS_MULTIPLIER[side],
        )

    # ------------------------------------------------------------------
    # Exit check
    # ------------------------------------------------------------------

    def check_exits_sync(self, user_id: int) -> List[position_engine.CloseResult]:
        db = self.session_factory()
        try:
            return self.check_exits(db, user_id)
        finally:
            db.close()

    def check_exits(self, db: Session, user_id: int) -> List[position_engine.CloseResult]:
        """Re-price the user's open agent positions and settle the ones that hit an exit"""
        positions = ledger.get_positions(db, user_id, status=PositionStatusEnum.OPEN.value, agent_only=True)
        if not positions:
            return []

        tickers = self.prices.get_batch_prices([p.token_id for p in positions], db=db)
        triggered = []
        for position in positions:
            ticker = tickers.get(position.token_id) or self.prices.get_price(position.token_id, db=db)
            if ticker is None or ticker.price <= 0:
                continue
            if position_engine.evaluate_exit(position, ticker.price) is not None:
                triggered.append((position.id, position.token_id, ticker.price))

        # settle_exit re-checks each trigger on the locked row
        results = []
        for position_id, token_id, price in triggered:
            result = position_engine.settle_exit(db, user_id, position_id, price)
            if result is not None:
                logger.info(f"[AGENT] closed position {position_id} ({token_id}) for user={user_id}: {result.reason} @ {price}")
                results.append(result)
        return results


agent_runner = AgentRunner()
