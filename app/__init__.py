"""
FastAPI Application Package

This package contains the FastAPI application exposing the exchange-integration
layer: credential validation, the signed proxy, the OAuth token exchange,
trader sync/scoring and the leaderboard.
"""
