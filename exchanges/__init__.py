"""
Exchange Gateways Package

This package contains one sub-package per provider.
Each provider (Binance, Bybit, cTrader) has its own subfolder with:
- api_client.py: REST client (signing or bearer auth, response decoding)
- __init__.py: Gateway class implementing ExchangeGateway

The stub sub-package serves canned trades behind the same contract, and
rest_client.py holds the aiohttp session handling shared by all clients.
"""
