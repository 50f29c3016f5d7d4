"""
Test Suite

Structure:
- tests/unit/: Component tests (signing, credentials, gateways, OAuth lifecycle,
  normalization, scoring, leaderboard, HTTP boundary) plus a two-provider
  pipeline test. Upstream HTTP is always faked.

Uses pytest with pytest-asyncio for testing async functionality.
"""
