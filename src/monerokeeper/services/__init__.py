"""Supervisors for the external Monero executables.

Each wrapper owns one process: it spawns it, waits for its RPC port and
interrupts it on shutdown. Keeping them separate from the keeper allows easy
mocking during testing.
"""
