"""
Simulation Configuration
========================
Central configuration for the trading simulation core.
All tunable parameters in one place, with overrides from the
environment (.env supported via python-dotenv, prefix SIM_).
"""

import os
from dataclasses import dataclass, field, asdict, fields
from typing import List, Optional, Dict, Any
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, '') else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, '') else default


def _env_seed() -> Optional[int]:
    value = os.getenv('SIM_SEED')
    return int(value) if value not in (None, '') else None


def _env_symbols() -> List[str]:
    value = os.getenv('SIM_SYMBOLS')
    if value:
        return [s.strip().upper() for s in value.split(',') if s.strip()]
    return ['BTCUSDT', 'ETHUSDT']


# camelCase names accepted by SimConfig.from_dict
_CAMEL_CASE_KEYS = {
    'initialCapital': 'initial_capital',
    'riskPerTrade': 'risk_per_trade',
    'maxPositions': 'max_positions',
    'commissionRate': 'commission_rate',
    'maxSlippage': 'max_slippage',
    'stopLossPercent': 'stop_loss_percent',
    'takeProfitPercent': 'take_profit_percent',
    'maxDailyLossPercent': 'max_daily_loss_percent',
    'historyWindowSize': 'history_window_size',
    'maxRiskPerTrade': 'max_risk_per_trade',
    'failureProbability': 'failure_probability',
}


@dataclass
class SimConfig:
    """
    Trading Simulation Configuration

    All parameters for the simulation core are defined here.
    Every field can be overridden by an environment variable
    named SIM_<FIELD_NAME_UPPERCASE>.
    """

    # =========================================================================
    # ACCOUNT
    # =========================================================================
    initial_capital: float = field(default_factory=lambda: _env_float('SIM_INITIAL_CAPITAL', 10000.0))
    symbols: List[str] = field(default_factory=_env_symbols)

    # =========================================================================
    # RISK MANAGEMENT
    # =========================================================================
    risk_per_trade: float = field(default_factory=lambda: _env_float('SIM_RISK_PER_TRADE', 0.02))
    max_risk_per_trade: float = field(default_factory=lambda: _env_float('SIM_MAX_RISK_PER_TRADE', 0.02))
    max_position_pct: float = field(default_factory=lambda: _env_float('SIM_MAX_POSITION_PCT', 1.0))
    max_positions: int = field(default_factory=lambda: _env_int('SIM_MAX_POSITIONS', 5))
    max_daily_loss_percent: float = field(default_factory=lambda: _env_float('SIM_MAX_DAILY_LOSS_PERCENT', 0.05))

    # =========================================================================
    # STOPS & TARGETS
    # =========================================================================
    stop_loss_percent: float = field(default_factory=lambda: _env_float('SIM_STOP_LOSS_PERCENT', 0.02))
    take_profit_percent: float = field(default_factory=lambda: _env_float('SIM_TAKE_PROFIT_PERCENT', 0.04))

    # =========================================================================
    # EXECUTION MODEL
    # =========================================================================
    commission_rate: float = field(default_factory=lambda: _env_float('SIM_COMMISSION_RATE', 0.001))
    max_slippage: float = field(default_factory=lambda: _env_float('SIM_MAX_SLIPPAGE', 0.001))
    failure_probability: float = field(default_factory=lambda: _env_float('SIM_FAILURE_PROBABILITY', 0.0))
    min_latency_ms: int = field(default_factory=lambda: _env_int('SIM_MIN_LATENCY_MS', 0))
    max_latency_ms: int = field(default_factory=lambda: _env_int('SIM_MAX_LATENCY_MS', 0))
    seed: Optional[int] = field(default_factory=_env_seed)

    # =========================================================================
    # ANALYTICS & SIGNALS
    # =========================================================================
    history_window_size: int = field(default_factory=lambda: _env_int('SIM_HISTORY_WINDOW_SIZE', 100))
    min_confidence: float = field(default_factory=lambda: _env_float('SIM_MIN_CONFIDENCE', 0.6))

    # =========================================================================
    # RUNTIME
    # =========================================================================
    worker_threads: int = field(default_factory=lambda: _env_int('SIM_WORKER_THREADS', 4))
    external_timeout_seconds: float = field(default_factory=lambda: _env_float('SIM_EXTERNAL_TIMEOUT_SECONDS', 2.0))

    # =========================================================================
    # DATA STORAGE
    # =========================================================================
    alert_store_path: str = field(default_factory=lambda: os.getenv('SIM_ALERT_STORE_PATH', 'data/simulation/alerts.json'))
    logs_dir: str = field(default_factory=lambda: os.getenv('SIM_LOGS_DIR', 'logs/simulation'))
    audit_csv: str = field(default_factory=lambda: os.getenv('SIM_AUDIT_CSV', 'logs/simulation/audit_trail.csv'))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SimConfig':
        """
        Build a config from a dict of overrides.

        Args:
            data: Options keyed by snake_case or camelCase names

        Returns:
            SimConfig with the overrides applied
        """
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = _CAMEL_CASE_KEYS.get(key, key)
            if name not in known:
                raise KeyError(f"Unknown configuration option: {key}")
            kwargs[name] = value
        return cls(**kwargs)

    def to_dict(self) -> dict:
        return asdict(self)

    def get_errors(self) -> List[str]:
        """List every problem with the current settings"""
        errors = []

        if self.initial_capital <= 0:
            errors.append("initial_capital must be positive")
        if self.risk_per_trade <= 0 or self.risk_per_trade > 0.10:
            errors.append("risk_per_trade should be between 0 and 0.10")
        if self.max_risk_per_trade <= 0 or self.max_risk_per_trade > 1:
            errors.append("max_risk_per_trade should be between 0 and 1")
        if self.max_position_pct <= 0:
            errors.append("max_position_pct must be positive")
        if self.max_positions < 1:
            errors.append("max_positions must be at least 1")
        if not 0 <= self.commission_rate < 1:
            errors.append("commission_rate should be between 0 and 1")
        if not 0 <= self.max_slippage < 1:
            errors.append("max_slippage should be between 0 and 1")
        if not 0 < self.stop_loss_percent < 1:
            errors.append("stop_loss_percent should be between 0 and 1")
        if self.take_profit_percent <= 0:
            errors.append("take_profit_percent must be positive")
        if not 0 <= self.max_daily_loss_percent <= 1:
            errors.append("max_daily_loss_percent should be between 0 and 1")
        if self.history_window_size < 5:
            errors.append("history_window_size should be at least 5")
        if not 0 <= self.failure_probability <= 1:
            errors.append("failure_probability should be between 0 and 1")
        if self.min_latency_ms < 0 or self.max_latency_ms < self.min_latency_ms:
            errors.append("latency range is invalid")
        if self.worker_threads < 1:
            errors.append("worker_threads must be at least 1")
        if self.external_timeout_seconds <= 0:
            errors.append("external_timeout_seconds must be positive")

        return errors

    def validate(self) -> bool:
        """Validate configuration settings"""
        errors = self.get_errors()

        if errors:
            for e in errors:
                print(f"[ERROR] Config: {e}")
            return False

        return True

    def display(self):
        """Print configuration summary"""
        print("\n" + "="*70)
        print("TRADING SIMULATION CONFIGURATION")
        print("="*70)
        print(f"Initial Capital:   ${self.initial_capital:,.2f}")
        print(f"Symbols:           {', '.join(self.symbols)}")
        print(f"History Window:    {self.history_window_size} ticks")
        print("-"*70)
        print("RISK SETTINGS:")
        print(f"  Risk per Trade:  {self.risk_per_trade:.1%}")
        print(f"  Max Risk/Trade:  {self.max_risk_per_trade:.1%}")
        print(f"  Max Position:    {self.max_position_pct:.1%}")
        print(f"  Max Positions:   {self.max_positions}")
        print(f"  Max Daily Loss:  {self.max_daily_loss_percent:.1%}")
        print(f"  Stop Loss:       {self.stop_loss_percent:.1%}")
        print(f"  Take Profit:     {self.take_profit_percent:.1%}")
        print("-"*70)
        print("EXECUTION MODEL:")
        print(f"  Commission:      {self.commission_rate:.2%}")
        print(f"  Max Slippage:    {self.max_slippage:.2%}")
        print(f"  Failure Prob:    {self.failure_probability:.0%}")
        print(f"  Latency:         {self.min_latency_ms}-{self.max_latency_ms} ms")
        print(f"  Seed:            {self.seed if self.seed is not None else 'random'}")
        print("="*70 + "\n")


# Default configuration instance
DEFAULT_CONFIG = SimConfig()


if __name__ == "__main__":
    config = SimConfig()
    if config.validate():
        print("[OK] Configuration valid")
        config.display()
    else:
        print("[ERROR] Configuration invalid")
