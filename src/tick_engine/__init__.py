"""
Tick Engine - Tick-Driven Trading Decision Framework

CYCLE:
=====================================
Environment + Edge + Regime per symbol
→ Thermostat + Session Brain
→ Market Router
→ Trade Management + SL/TP exits
→ Entry → Bias Filter → Sizing
→ Risk Guardrails
→ EngineState

COMPONENTS:
1. Environment - Market / volatility / liquidity classification
2. Edge - Directional rationale score (always long or short)
3. Thermostat - Aggression level from recent results
4. Adaptive - Personality selection
5. Risk Guardrails - Portfolio admission control

SAFETY: The engine only proposes positions. It never talks to a broker.
"""

from .config import (
    EngineConfig,
    RiskConfig,
    BurstConfig,
    ModeConfig,
    ThermostatConfig,
    SessionTableConfig,
    MarketTableConfig,
    RouterConfig,
    ConfigError,
    DEFAULT_CONFIG,
    load_config,
    save_config,
)

from .models import (
    Side,
    Personality,
    MarketState,
    VolState,
    LiquidityState,
    CloseReason,
    BurstStatus,
    PriceTick,
    Position,
    ClosedTrade,
    ProposedOrder,
    SystemLog,
    SessionStats,
    EngineState,
)

from .context import EngineSession
from .logging_module import setup_logging, get_logger, EngineLogBook

# Market analysis
from .environment import EnvironmentClassifier, EnvironmentSummary
from .edge import EdgeEngine, EdgeSignal
from .regime import RegimeTracker, RegimeSnapshot, BiasFilter, BiasFilterResult
from .session_brain import SessionBrain, SessionInfo, SessionAnalysis

# Decision layer
from .thermostat import Thermostat, ThermostatState, AggressionLevel
from .router import MarketRouter, RouterResult, TradeabilityScore
from .entry import EntryEngine, EntryDecision
from .sizing import PositionSizer, SizingResult, create_risk_profile, plan_burst_batch
from .management import TradeManager, ManagementDecision, ManagementAction
from .risk_guardrails import RiskGuardrails, AdmissionResult
from .adaptive import AdaptiveModeController, AdaptiveDecision

# Cycle
from .pnl import mark_to_market, check_exits, close_positions, calculate_stats
from .orchestrator import (
    TickInput,
    TickOrchestrator,
    run_tick,
    global_close,
    take_burst_profit,
)

__all__ = [
    # Config
    'EngineConfig', 'RiskConfig', 'BurstConfig', 'ModeConfig', 'ThermostatConfig',
    'SessionTableConfig', 'MarketTableConfig', 'RouterConfig', 'ConfigError',
    'DEFAULT_CONFIG', 'load_config', 'save_config',
    # Models
    'Side', 'Personality', 'MarketState', 'VolState', 'LiquidityState',
    'CloseReason', 'BurstStatus', 'PriceTick', 'Position', 'ClosedTrade',
    'ProposedOrder', 'SystemLog', 'SessionStats', 'EngineState',
    # Session + logging
    'EngineSession', 'setup_logging', 'get_logger', 'EngineLogBook',
    # Analysis
    'EnvironmentClassifier', 'EnvironmentSummary', 'EdgeEngine', 'EdgeSignal',
    'RegimeTracker', 'RegimeSnapshot', 'BiasFilter', 'BiasFilterResult',
    'SessionBrain', 'SessionInfo', 'SessionAnalysis',
    # Decisions
    'Thermostat', 'ThermostatState', 'AggressionLevel',
    'MarketRouter', 'RouterResult', 'TradeabilityScore',
    'EntryEngine', 'EntryDecision',
    'PositionSizer', 'SizingResult', 'create_risk_profile', 'plan_burst_batch',
    'TradeManager', 'ManagementDecision', 'ManagementAction',
    'RiskGuardrails', 'AdmissionResult',
    'AdaptiveModeController', 'AdaptiveDecision',
    # Cycle
    'mark_to_market', 'check_exits', 'close_positions', 'calculate_stats',
    'TickInput', 'TickOrchestrator', 'run_tick', 'global_close', 'take_burst_profit',
]
