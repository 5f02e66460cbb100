from .base import ExchangeClient
from .coinapi import MAX_LIMIT, CoinAPIClient

__all__ = ['ExchangeClient', 'CoinAPIClient', 'MAX_LIMIT']
