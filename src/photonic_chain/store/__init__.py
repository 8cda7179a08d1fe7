"""Local UTXO cache persistence."""
