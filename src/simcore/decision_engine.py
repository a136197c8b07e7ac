"""
Decision Engine
===============
Turns a PriceAnalysis into a TradingDecision:
- Independent weighted signals (RSI, trend, volume spike)
- LONG / SHORT / NEUTRAL by summed confidence against a threshold
- Entry, stop and target from support/resistance or fixed offsets
- Risk/reward ratio and decision quality grade
"""

import logging
from dataclasses import dataclass, asdict, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .analytics_engine import AnalyticsEngine, PriceAnalysis
from .sim_config import SimConfig

logger = logging.getLogger(__name__)

RSI_OVERSOLD = 30
RSI_OVERBOUGHT = 70
VOLUME_SPIKE_RATIO = 1.5
DECISION_THRESHOLD = 1.0
DEFAULT_RISK_REWARD = 1.5
MAX_ENTRY_DEVIATION = 0.05
TIMEFRAME = '15m-1h'

# Signal weights
RSI_BUY_WEIGHT = 0.8
RSI_SELL_WEIGHT = 0.7
TREND_WEIGHT = 0.6
VOLUME_WEIGHT = 0.7


class Decision(Enum):
    """Trading decision types"""
    LONG = "LONG"
    SHORT = "SHORT"
    NEUTRAL = "NEUTRAL"


class SignalType(Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass
class TradingSignal:
    """One piece of evidence for a direction"""
    type: SignalType
    reason: str
    confidence: float
    source: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data['type'] = self.type.value
        return data


@dataclass
class TradingDecision:
    """Decision for one symbol at one point in time"""
    symbol: str
    decision: Decision
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    risk_reward_ratio: float = DEFAULT_RISK_REWARD
    confidence: float = 0.0
    signals: List[TradingSignal] = field(default_factory=list)
    quality: str = 'LOW'
    timeframe: str = TIMEFRAME
    timestamp: Optional[datetime] = None

    @property
    def is_actionable(self) -> bool:
        return self.decision != Decision.NEUTRAL

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'decision': self.decision.value,
            'entry_price': self.entry_price,
            'stop_loss': self.stop_loss,
            'take_profit': self.take_profit,
            'risk_reward_ratio': self.risk_reward_ratio,
            'confidence': self.confidence,
            'signals': [s.to_dict() for s in self.signals],
            'quality': self.quality,
            'timeframe': self.timeframe,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
        }


def collect_signals(analysis: PriceAnalysis) -> List[TradingSignal]:
    """
    Independent signals with fixed confidence weights.

    A volume spike only counts in the direction of a bullish or bearish
    trend. On a neutral trend it adds no signal at all, not a SELL.
    """
    signals = []

    if analysis.rsi is not None:
        if analysis.rsi < RSI_OVERSOLD:
            signals.append(TradingSignal(
                SignalType.BUY, f"RSI oversold ({analysis.rsi:.1f})", RSI_BUY_WEIGHT, 'RSI'))
        elif analysis.rsi > RSI_OVERBOUGHT:
            signals.append(TradingSignal(
                SignalType.SELL, f"RSI overbought ({analysis.rsi:.1f})", RSI_SELL_WEIGHT, 'RSI'))

    if analysis.trend == 'bullish':
        signals.append(TradingSignal(SignalType.BUY, "Bullish trend confirmed", TREND_WEIGHT, 'TREND'))
    elif analysis.trend == 'bearish':
        signals.append(TradingSignal(SignalType.SELL, "Bearish trend confirmed", TREND_WEIGHT, 'TREND'))

    if analysis.volume_change is not None and analysis.volume_change > VOLUME_SPIKE_RATIO:
        if analysis.trend == 'bullish':
            signals.append(TradingSignal(
                SignalType.BUY, f"Volume spike ({analysis.volume_change:.1f}x)", VOLUME_WEIGHT, 'VOLUME'))
        elif analysis.trend == 'bearish':
            signals.append(TradingSignal(
                SignalType.SELL, f"Volume spike ({analysis.volume_change:.1f}x)", VOLUME_WEIGHT, 'VOLUME'))

    return signals


def risk_reward_ratio(current: float, support: Optional[float], resistance: Optional[float]) -> float:
    """(resistance - current) / (current - support), or the default when undefined"""
    if support is None or resistance is None:
        return DEFAULT_RISK_REWARD
    reward = resistance - current
    risk = current - support
    if reward <= 0 or risk <= 0:
        return DEFAULT_RISK_REWARD
    return reward / risk


def grade_quality(confidence: float, rr: float) -> str:
    if confidence > 0.8 and rr > 2:
        return 'HIGH'
    if confidence > 0.6 and rr > 1.5:
        return 'MEDIUM'
    return 'LOW'


def entry_levels(decision: Decision, current: float, support: Optional[float],
                 resistance: Optional[float]) -> Tuple[float, Optional[float], Optional[float]]:
    """
    Entry, stop and target for a direction.

    Levels are used only when they sit on the protective/profitable
    side of the entry; otherwise fixed offsets from the current price.
    """
    if decision == Decision.LONG:
        entry = current * 0.995
        stop = support if support is not None and support < entry else current * 0.98
        target = resistance if resistance is not None and resistance > entry else current * 1.03
        return entry, stop, target
    if decision == Decision.SHORT:
        entry = current * 1.005
        stop = resistance if resistance is not None and resistance > entry else current * 1.02
        target = support if support is not None and support < entry else current * 0.97
        return entry, stop, target
    return current, None, None


class DecisionEngine:
    """
    Combines analytics output into trading decisions.

    Features:
    - RSI oversold/overbought, trend and volume-spike signals
    - Threshold on summed confidence per direction
    - Support/resistance based stops and targets
    - Quality grading and validity window against the live price
    """

    def __init__(self, analytics: AnalyticsEngine = None, config: SimConfig = None):
        """
        Initialize DecisionEngine.

        Args:
            analytics: AnalyticsEngine supplying analyses by symbol
            config: SimConfig instance
        """
        self.config = config or SimConfig()
        self.analytics = analytics
        self.threshold = DECISION_THRESHOLD
        logger.info(f"[OK] DecisionEngine initialized (threshold: {self.threshold})")

    def generate_decision(self, symbol: str, analysis: PriceAnalysis = None) -> TradingDecision:
        """
        Build a decision for one symbol.

        Args:
            symbol: Symbol to decide on
            analysis: Analysis to use (looked up in the analytics engine if None)

        Returns:
            TradingDecision; NEUTRAL when no analysis is available
        """
        if analysis is None and self.analytics is not None:
            analysis = self.analytics.get_analysis(symbol)
        if analysis is None:
            return TradingDecision(symbol=symbol, decision=Decision.NEUTRAL)

        signals = collect_signals(analysis)
        buy = [s for s in signals if s.type == SignalType.BUY]
        sell = [s for s in signals if s.type == SignalType.SELL]
        buy_conf = sum(s.confidence for s in buy)
        sell_conf = sum(s.confidence for s in sell)

        if buy_conf > sell_conf and buy_conf > self.threshold:
            decision = Decision.LONG
            confidence = buy_conf / len(buy)
        elif sell_conf > buy_conf and sell_conf > self.threshold:
            decision = Decision.SHORT
            confidence = sell_conf / len(sell)
        else:
            decision = Decision.NEUTRAL
            confidence = 0.0

        current = analysis.current_price
        support = analysis.support_levels[0] if analysis.support_levels else None
        resistance = analysis.resistance_levels[0] if analysis.resistance_levels else None

        rr = risk_reward_ratio(current, support, resistance)
        entry, stop, target = entry_levels(decision, current, support, resistance)

        result = TradingDecision(
            symbol=symbol,
            decision=decision,
            entry_price=entry,
            stop_loss=stop,
            take_profit=target,
            risk_reward_ratio=rr,
            confidence=min(confidence, 1.0),
            signals=signals,
            quality=grade_quality(confidence, rr) if decision != Decision.NEUTRAL else 'LOW',
            timestamp=analysis.timestamp
        )

        if result.is_actionable:
            logger.debug(
                f"{symbol}: {decision.value} conf={result.confidence:.2f} rr={rr:.2f} "
                f"entry={entry:.2f} stop={stop:.2f} target={target:.2f}"
            )
        return result

    def generate_all(self) -> List[TradingDecision]:
        """Decisions for every symbol the analytics engine knows"""
        if self.analytics is None:
            return []
        return [self.generate_decision(a.symbol, a) for a in self.analytics.get_all()]

    def is_decision_valid(self, decision: TradingDecision, current_price: float) -> bool:
        """Entry still within 5% of the live price"""
        if not decision.is_actionable or decision.entry_price is None or current_price <= 0:
            return False
        return abs(decision.entry_price - current_price) / current_price <= MAX_ENTRY_DEVIATION

    def as_strategy(self) -> Callable:
        """Adapter usable as a backtester strategy function"""
        def strategy(context) -> TradingDecision:
            return self.generate_decision(context.symbol, context.analysis)
        return strategy
