"""
OKX / KuCoin spot arbitrage bot.
"""

__version__ = "0.3.0"
