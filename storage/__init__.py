"""
Storage Package

Session-scoped and in-memory state used by the services layer.

Current implementation:
- token_store: OAuth tokens and in-flight refresh tasks, keyed by session id
- trade_store: canonical TradeRecords and TraderProfiles, keyed by profile id

The trade store stands in for the external persistence collaborator; swapping
it for a database only has to keep the same method surface.
"""
