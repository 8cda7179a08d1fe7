"""photonic-chain — UTXO cache sync, coin selection and fee sizing for Radiant wallets."""

__version__ = "0.1.0"
