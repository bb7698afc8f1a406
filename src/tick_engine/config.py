"""
Tick Engine Configuration

Single source of truth for all engine parameters.

Calibration tables (session phases, event calendar, correlation groups,
asset-class expectations) are DATA, not logic. They live here as dataclass
defaults and can be overridden from a YAML file without touching the
components that read them.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Tuple, Optional, Any
from pathlib import Path
import yaml


class ConfigError(ValueError):
    """Raised when a configuration snapshot is unusable."""


PERSONALITIES = ("burst", "scalper", "trend")


@dataclass(frozen=True)
class RiskConfig:
    """Portfolio risk limits (all percentages of equity)."""
    max_daily_loss_percent: float = 5.0
    max_concurrent_risk_percent: float = 10.0   # Notional exposure cap
    max_open_trades: int = 20
    max_per_symbol_exposure: float = 30.0       # Count limit = ceil(value / 5)


@dataclass(frozen=True)
class BurstConfig:
    """Clustered burst entry parameters."""
    size: int = 20                              # Orders per batch
    risk_per_burst_percent: float = 2.0         # Exposure budget for the whole batch
    daily_profit_target_percent: float = 8.0    # Burst lock threshold
    sl_percent: float = 0.5                     # Of mid
    tp_percent: float = 1.0                     # Of mid


@dataclass(frozen=True)
class ModeConfig:
    """
    Personality selection.

    selection: "adaptive" or one of burst / scalper / trend (pinned).
    """
    selection: str = "adaptive"
    max_entries_total: int = 10

    @property
    def is_adaptive(self) -> bool:
        return self.selection == "adaptive"


@dataclass(frozen=True)
class ThermostatConfig:
    """Aggression controller parameters."""
    window_minutes: int = 60
    min_trades_for_adjustment: int = 5
    win_rate_high: float = 65.0
    win_rate_low: float = 40.0


@dataclass(frozen=True)
class SessionPhaseSpec:
    """One row of the weekday session table (UTC minutes of day, end exclusive)."""
    phase: str
    start_minute: int
    end_minute: int
    quality: float
    volatility: str      # low / normal / high
    spread: str          # tight / normal / wide
    modes: Tuple[str, ...]
    name: str = ""


@dataclass(frozen=True)
class MarketEvent:
    """Recurring high-impact calendar window."""
    name: str
    weekday: int             # Monday = 0
    hour: int
    minute: int
    impact: str = "high"
    first_week_only: bool = False
    currencies: Tuple[str, ...] = ()
    lead_minutes: int = 60        # Window opens this long before the release
    tail_minutes: int = 90        # and closes this long after it


@dataclass(frozen=True)
class EdgeSessionWindow:
    """Hour window used by the edge engine's session score."""
    name: str
    start_hour: int
    end_hour: int
    quality: float


def _default_phases() -> Tuple[SessionPhaseSpec, ...]:
    return (
        SessionPhaseSpec("asia_early", 0, 180, 0.5, "low", "normal", ("scalper",), "Early Asia"),
        SessionPhaseSpec("asia_late", 180, 420, 0.55, "normal", "normal", ("scalper", "trend"), "Late Asia"),
        SessionPhaseSpec("london_early", 420, 510, 0.8, "high", "normal", ("burst", "trend"), "London Open"),
        SessionPhaseSpec("london_prime", 510, 780, 0.9, "normal", "tight",
                         ("burst", "scalper", "trend"), "London Session"),
        SessionPhaseSpec("overlap", 780, 960, 1.0, "high", "tight",
                         ("burst", "scalper", "trend"), "London/NY Overlap"),
        SessionPhaseSpec("ny_prime", 960, 1200, 0.85, "normal", "tight",
                         ("burst", "scalper", "trend"), "NY Session"),
        SessionPhaseSpec("ny_late", 1200, 1320, 0.6, "low", "normal", ("scalper", "trend"), "Late NY"),
    )


def _default_events() -> Tuple[MarketEvent, ...]:
    return (
        MarketEvent("Non-Farm Payrolls", 4, 13, 30, "high", True, ("USD", "EUR", "GBP"), 30, 90),
        MarketEvent("FOMC Decision", 2, 18, 0, "high", False, ("USD", "EUR", "GBP", "JPY"), 60, 180),
        MarketEvent("ECB Decision", 3, 12, 45, "high", False, ("EUR", "USD", "GBP"), 45, 135),
    )


def _default_edge_windows() -> Tuple[EdgeSessionWindow, ...]:
    # Checked in order; first match wins
    return (
        EdgeSessionWindow("overlap", 13, 16, 1.0),
        EdgeSessionWindow("ny", 13, 22, 0.85),
        EdgeSessionWindow("london", 7, 16, 0.9),
        EdgeSessionWindow("asia", 0, 8, 0.6),
    )


@dataclass(frozen=True)
class SessionTableConfig:
    """Session timing tables."""
    phases: Tuple[SessionPhaseSpec, ...] = field(default_factory=_default_phases)
    off_hours_quality: float = 0.3
    weekend_quality: float = 0.1
    events: Tuple[MarketEvent, ...] = field(default_factory=_default_events)
    reduce_exposure_minutes: int = 30
    edge_windows: Tuple[EdgeSessionWindow, ...] = field(default_factory=_default_edge_windows)
    edge_off_quality: float = 0.3


@dataclass(frozen=True)
class MarketTableConfig:
    """Symbol → asset class and correlation group tables."""
    crypto_tokens: Tuple[str, ...] = ("BTC", "ETH", "XRP", "SOL", "ADA", "BNB", "AVAX")
    stock_symbols: Tuple[str, ...] = ("TSLA", "AAPL", "NVDA", "META", "MSFT", "SPY", "QQQ")
    gold_tokens: Tuple[str, ...] = ("XAU",)
    fx_tokens: Tuple[str, ...] = ("EUR", "GBP", "AUD", "USD", "JPY", "CHF")

    # Expected spread as % of mid, by asset class
    expected_spread_percent: Dict[str, float] = field(default_factory=lambda: {
        "crypto": 0.1,
        "forex": 0.02,
        "stock": 0.05,
        "gold": 0.03,
        "other": 0.02,
    })

    # Peers used by the edge engine's correlation score
    edge_groups: Dict[str, Tuple[str, ...]] = field(default_factory=lambda: {
        "crypto": ("BTCUSD", "ETHUSD", "XRPUSD", "SOLUSD", "ADAUSD", "BNBUSD", "AVAXUSD"),
        "usd_majors": ("EURUSD", "GBPUSD", "AUDUSD"),
        "usd_crosses": ("USDJPY", "USDCHF"),
        "indices": ("SPY", "QQQ"),
        "tech": ("TSLA", "AAPL", "NVDA", "META", "MSFT"),
    })

    # Exposure groups used by position sizing
    sizing_groups: Dict[str, Tuple[str, ...]] = field(default_factory=lambda: {
        "crypto": ("BTCUSD", "ETHUSD", "XRPUSD", "SOLUSD", "ADAUSD", "BNBUSD", "AVAXUSD"),
        "usd_pairs": ("EURUSD", "GBPUSD", "AUDUSD", "USDCHF"),
        "yen_pairs": ("USDJPY",),
        "indices": ("SPY", "QQQ"),
        "tech": ("TSLA", "AAPL", "NVDA", "META", "MSFT"),
        "gold": ("XAUUSD",),
    })

    def asset_class(self, symbol: str) -> str:
        """Classify a symbol as crypto / stock / gold / forex / other."""
        s = symbol.upper()
        if any(token in s for token in self.crypto_tokens):
            return "crypto"
        if any(name in s for name in self.stock_symbols):
            return "stock"
        if any(token in s for token in self.gold_tokens):
            return "gold"
        if any(token in s for token in self.fx_tokens):
            return "forex"
        return "other"

    def group_of(self, symbol: str, groups: Dict[str, Tuple[str, ...]]) -> Optional[str]:
        """
        Find the group a symbol belongs to.

        Members match on their non-USD stem, so "BTCUSDT" joins crypto
        through "BTCUSD" and "XAUUSD" joins gold.
        """
        s = symbol.upper()
        for name, members in groups.items():
            for member in members:
                if s == member:
                    return name
        for name, members in groups.items():
            for member in members:
                stem = member.replace("USD", "")
                if stem and stem in s:
                    return name
        return None


@dataclass(frozen=True)
class RouterConfig:
    """Market router weights and candidate counts."""
    environment_weight: float = 0.25
    edge_weight: float = 0.35
    spread_weight: float = 0.15
    session_weight: float = 0.25
    min_score: float = 35.0
    max_candidates: int = 5
    fallback_candidates: int = 3


@dataclass
class EngineConfig:
    """Master configuration - aggregates all configs."""
    symbols: List[str] = field(default_factory=lambda: [
        "BTCUSD", "ETHUSD", "EURUSD", "GBPUSD", "USDJPY", "XAUUSD",
    ])
    risk: RiskConfig = field(default_factory=RiskConfig)
    burst: BurstConfig = field(default_factory=BurstConfig)
    modes: ModeConfig = field(default_factory=ModeConfig)
    thermostat: ThermostatConfig = field(default_factory=ThermostatConfig)
    sessions: SessionTableConfig = field(default_factory=SessionTableConfig)
    markets: MarketTableConfig = field(default_factory=MarketTableConfig)
    router: RouterConfig = field(default_factory=RouterConfig)

    # Session control flags (owned by the persistence layer)
    owner: str = "paper"
    halted: bool = False
    burst_requested: bool = False
    history_cap: int = 100

    def validate(self) -> Tuple[bool, List[str]]:
        """Validate configuration."""
        errors = []

        if not self.symbols:
            errors.append("symbols must not be empty")

        if self.risk.max_daily_loss_percent <= 0:
            errors.append("max_daily_loss_percent must be > 0")

        if self.risk.max_concurrent_risk_percent <= 0:
            errors.append("max_concurrent_risk_percent must be > 0")

        if self.risk.max_open_trades < 1:
            errors.append("max_open_trades must be >= 1")

        if self.burst.size < 1:
            errors.append("burst size must be >= 1")

        if self.modes.selection not in PERSONALITIES + ("adaptive",):
            errors.append(f"unknown mode selection: {self.modes.selection}")

        if self.thermostat.win_rate_low >= self.thermostat.win_rate_high:
            errors.append("thermostat win_rate_low must be < win_rate_high")

        weights = (
            self.router.environment_weight + self.router.edge_weight
            + self.router.spread_weight + self.router.session_weight
        )
        if abs(weights - 1.0) > 1e-6:
            errors.append(f"router weights must sum to 1 (got {weights:.3f})")

        for phase in self.sessions.phases:
            if not 0 <= phase.start_minute < phase.end_minute <= 1440:
                errors.append(f"session phase {phase.phase} has an invalid window")
            if not 0 <= phase.quality <= 1:
                errors.append(f"session phase {phase.phase} quality must be in [0, 1]")

        if self.history_cap < 30:
            errors.append("history_cap must be >= 30")

        return len(errors) == 0, errors

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        # Tuples are written as lists so the YAML stays plain
        return _plain(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EngineConfig':
        """Build a config from a (partial) mapping, keeping defaults for gaps."""
        data = data or {}
        defaults = cls()

        sessions_data = dict(data.get('sessions', {}))
        if 'phases' in sessions_data:
            sessions_data['phases'] = tuple(
                SessionPhaseSpec(**{**p, 'modes': tuple(p.get('modes', ()))})
                for p in sessions_data['phases']
            )
        if 'events' in sessions_data:
            sessions_data['events'] = tuple(
                MarketEvent(**{**e, 'currencies': tuple(e.get('currencies', ()))})
                for e in sessions_data['events']
            )
        if 'edge_windows' in sessions_data:
            sessions_data['edge_windows'] = tuple(
                EdgeSessionWindow(**w) for w in sessions_data['edge_windows']
            )

        markets_data = dict(data.get('markets', {}))
        for key in ('crypto_tokens', 'stock_symbols', 'gold_tokens', 'fx_tokens'):
            if key in markets_data:
                markets_data[key] = tuple(markets_data[key])
        for key in ('edge_groups', 'sizing_groups'):
            if key in markets_data:
                markets_data[key] = {k: tuple(v) for k, v in markets_data[key].items()}

        return cls(
            symbols=list(data.get('symbols', defaults.symbols)),
            risk=RiskConfig(**data.get('risk', {})),
            burst=BurstConfig(**data.get('burst', {})),
            modes=ModeConfig(**data.get('modes', {})),
            thermostat=ThermostatConfig(**data.get('thermostat', {})),
            sessions=SessionTableConfig(**sessions_data),
            markets=MarketTableConfig(**markets_data),
            router=RouterConfig(**data.get('router', {})),
            owner=data.get('owner', defaults.owner),
            halted=bool(data.get('halted', False)),
            burst_requested=bool(data.get('burst_requested', False)),
            history_cap=int(data.get('history_cap', defaults.history_cap)),
        )


def _plain(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def load_config(path: Path) -> EngineConfig:
    """Load and validate an engine configuration from YAML."""
    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}

    try:
        config = EngineConfig.from_dict(data)
    except TypeError as exc:
        raise ConfigError(f"invalid configuration in {path}: {exc}") from exc

    ok, errors = config.validate()
    if not ok:
        raise ConfigError(f"invalid configuration in {path}: " + "; ".join(errors))
    return config


def save_config(config: EngineConfig, path: Path) -> None:
    """Save an engine configuration to YAML."""
    with open(path, 'w') as f:
        yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)


# Default configuration instance
DEFAULT_CONFIG = EngineConfig()
