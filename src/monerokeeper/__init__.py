"""monerokeeper - supervise monerod and monero-wallet-rpc as one unit."""

__version__ = "0.1.0"
