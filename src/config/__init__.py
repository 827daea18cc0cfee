"""Config package initialization"""

# Import classes only when needed to avoid circular imports
# Use direct imports in your code: from config.constants import BASE_SLIPPAGE

__all__ = [
    'get_settings',
    'TradingSettings',
]
