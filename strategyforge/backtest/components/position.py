"""Position state machine and equity bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .records import SignalType, TradeRecord, TradeSignal


class PositionState(str, Enum):
    FLAT = "FLAT"
    LONG = "LONG"
    SHORT = "SHORT"


_TARGET_STATE = {
    SignalType.BUY: PositionState.LONG,
    SignalType.SELL: PositionState.SHORT,
    SignalType.EXIT: PositionState.FLAT,
}


@dataclass(slots=True)
class Position:
    state: PositionState = PositionState.FLAT
    entry_price: float = 0.0
    entry_time: int = 0
    entry_equity: float = 0.0
    entry_fee: float = 0.0


class PositionBook:
    """Turn accepted signals into realized P&L, one position at a time.

    Exposure per trade is ``position_size`` of current equity. Fills move
    ``slippage`` against the trader and each fill pays ``commission`` on the
    traded notional.
    """

    def __init__(
        self,
        initial_capital: float,
        position_size: float,
        slippage: float = 0.0,
        commission: float = 0.0,
    ) -> None:
        self.equity = float(initial_capital)
        self._size = float(position_size)
        self._slippage = float(slippage)
        self._commission = float(commission)
        self.position = Position()
        self.trades: list[TradeRecord] = []

    @property
    def state(self) -> PositionState:
        return self.position.state

    def apply(self, signal: TradeSignal, close: float, timestamp: int) -> bool:
        """Apply ``signal`` at ``close``. Returns False when it would not change the position."""
        target = _TARGET_STATE[signal.type]
        if self.position.state is target:
            return False
        if self.position.state is not PositionState.FLAT:
            self._close(close, timestamp)
        if target is not PositionState.FLAT:
            self._open(target, close, timestamp)
        return True

    def mark_to_market(self, close: float) -> float:
        pos = self.position
        if pos.state is PositionState.FLAT or pos.entry_price <= 0:
            return self.equity
        return self.equity + self._move(pos.state, pos.entry_price, close) * self._size * self.equity

    def _open(self, state: PositionState, close: float, timestamp: int) -> None:
        side = 1.0 if state is PositionState.LONG else -1.0
        entry_equity = self.equity
        fee = self._fee()
        self.equity -= fee
        self.position = Position(
            state=state,
            entry_price=self._fill(close, side),
            entry_time=timestamp,
            entry_equity=entry_equity,
            entry_fee=fee,
        )

    def _close(self, close: float, timestamp: int) -> None:
        pos = self.position
        side = -1.0 if pos.state is PositionState.LONG else 1.0
        exit_price = self._fill(close, side)
        gross = self._move(pos.state, pos.entry_price, exit_price) * self._size * self.equity
        self.equity += gross
        fee = self._fee()
        self.equity -= fee
        net = gross - fee - pos.entry_fee
        base = pos.entry_equity if pos.entry_equity > 0 else 1.0
        self.trades.append(
            TradeRecord(
                side=pos.state.value,
                entry_time=pos.entry_time,
                exit_time=timestamp,
                entry_price=pos.entry_price,
                exit_price=exit_price,
                pnl=net,
                return_pct=net / base * 100.0,
                fees=fee + pos.entry_fee,
            )
        )
        self.position = Position()

    def _fill(self, close: float, side: float) -> float:
        return close * (1.0 + side * self._slippage)

    def _fee(self) -> float:
        return self._commission * self._size * self.equity

    @staticmethod
    def _move(state: PositionState, entry: float, price: float) -> float:
        if state is PositionState.LONG:
            return (price - entry) / entry
        return (entry - price) / entry
