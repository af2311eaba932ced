"""
Integration Tests for SolAgent Forge

The integration tests cover:
- PDA derivation, discriminators and Anchor IDL decoding
- JSON-RPC dispatch, including error envelopes and notifications
- RPC tools against a mocked ``AsyncClient``
- Static analysis and project scaffolding
- The stdio transport, the HTTP adapter and the CLI

All RPC tests mock the Solana client; scaffolding writes to a temporary
directory.
"""

# Integration tests for solagent-forge
