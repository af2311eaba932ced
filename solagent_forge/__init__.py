"""
SolAgent Forge

An MCP (Model Context Protocol) server exposing Solana developer tools:
RPC queries (balances, accounts, program accounts, deployment status,
transactions, devnet airdrops, on-chain IDL checks), deterministic
derivations (Program Derived Addresses, Anchor discriminators), static
analysis of Anchor code and compiler output, and Anchor project
scaffolding.

Main components:
- dispatcher.py: JSON-RPC routing over an immutable tool registry
- registry.py: tool descriptors and handlers
- derivation.py: PDA and discriminator derivation
- rpc.py: Solana RPC tools
- stdio.py / http_server.py: transports
"""

__version__ = "0.1.0"
