"""
x402 Payment Protocol Integration Module.

This module implements pay-per-call access control for the Evice gateway:
protected endpoints are paid for either from a pre-funded budget or with a
one-time native NEURO payment on NeuroWeb, proven by transaction hash.

Key components:
- store: key/value backends (memory, KV REST, fallback)
- ledger: budget balances and spent references with atomic updates
- verifier: on-chain transaction verification over JSON-RPC
- gates: budget gate, payment gate and the gate pipeline
- middleware: FastAPI middleware running the pipeline on protected endpoints
- pricing: endpoint prices and the agent tool catalog
- audit: payment audit logging

Configuration is loaded from environment variables via evice.core.config.
"""
