"""Core package initialization"""

# Import classes only when needed to avoid circular imports
# Use direct imports in your code: from core.risk_controller import RiskController

__all__ = [
    'RiskController',
    'TriangularSimulator',
    'ArbitrageBot',
]
