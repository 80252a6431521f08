"""
Pump.fun Bundle Trading Package

This package provides the trading engine behind an MCP agent that creates tokens on a
bonding-curve launch protocol and executes batched buy/sell orders across many wallets.
The resulting transactions are submitted as one atomic bundle to a private relay.

The package includes:
- Constant-product bonding curve pricing
- Token metadata and batch validation
- Multi-wallet instruction assembly and signing
- Bundle submission with bounded retries and exponential backoff
- Request orchestration for create, buy and sell intents
- MCP server implementation exposing the intents as tools
"""
