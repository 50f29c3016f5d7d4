"""
Core Package

Contains the provider-agnostic core logic including:
- SignatureEngine: HMAC request signing per exchange scheme
- CredentialResolver: Declarative credential fallback chain
- ExchangeGateway: Abstract base class defining the contract for all providers
- ExchangeManager: Registry routing calls to gateways (real or stub)
- Schemas: Pydantic models for credentials, tokens, trades and ratings
- Errors: The structured error taxonomy shared by every layer
"""
