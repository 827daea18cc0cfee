"""Strategies package initialization"""

# Import classes only when needed to avoid circular imports
# Use direct imports in your code: from strategies.triangular_strategy import TriangularStrategy

__all__ = [
    'ArbitrageStrategy',
    'TriangularStrategy',
    'CrossVenueStrategy',
]
