"""
Test Package for SolAgent Forge

Test Structure:
- integration/: tests driving the tools through the dispatcher, the
  stdio transport, the HTTP adapter and the CLI
"""

# Test package for solagent-forge
