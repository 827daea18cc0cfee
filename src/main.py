"""
Main Entry Point for the Arbitrage Detection & Risk Engine
Paper-trading process: file-backed reference venue, live external prices,
simulated execution
"""

import os
import sys
import asyncio
from functools import partial

# Add src to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from config.settings import get_settings
from core.arbitrage_bot import ArbitrageBot
from core.execution_gateway import PaperExecutionGateway
from core.external_prices import BinanceTickerSource, CoinbaseRateSource, ExternalPriceFeed
from core.market_data import CachedMarketDataProvider, load_snapshot_file
from utils.exceptions import ArbitrageBotError, CircuitBreakerError
from utils.logger import get_logger, setup_logging


logger = get_logger(__name__)


def build_bot(settings) -> ArbitrageBot:
    """Wire collaborators from settings"""
    external_feed = ExternalPriceFeed(
        sources=[
            BinanceTickerSource(settings.binance_base_url),
            CoinbaseRateSource(settings.coinbase_base_url),
        ],
        cache_ttl_sec=settings.external_price_cache_ttl_sec,
        request_timeout_sec=settings.external_request_timeout_sec,
    )
    market_data = CachedMarketDataProvider(
        snapshot_loader=partial(load_snapshot_file, settings.snapshot_file),
        external_feed=external_feed,
    )
    return ArbitrageBot(settings, market_data, PaperExecutionGateway())


async def main():
    """Main entry point"""
    settings = get_settings()
    setup_logging(
        log_level=settings.log_level,
        log_file=settings.log_file_path,
        structured=settings.structured_logging,
    )

    logger.info("Starting Arbitrage Engine...")

    bot = build_bot(settings)
    bot.install_signal_handlers()
    await bot.initialize()

    # Runs until stopped or emergency shutdown
    await bot.run()


def run():
    """Console script entry point (arb-engine)"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Engine stopped by user")
    except CircuitBreakerError as e:
        logger.critical(f"Circuit breaker triggered: {e}")
        sys.exit(1)
    except ArbitrageBotError as e:
        logger.error(f"Engine error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.critical(f"Unexpected error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    """
    Entry point for deployment
    Run with: python src/main.py
    """
    run()
