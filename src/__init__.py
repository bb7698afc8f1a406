"""
Tick Decision Engine.

A tick-driven trading decision engine with:
- Environment classification and edge scoring
- Adaptive trading personalities (burst / scalper / trend)
- Active trade management
- Portfolio risk guardrails
"""

__version__ = "1.0.0"
__author__ = "Tick Engine"
