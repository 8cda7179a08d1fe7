"""Chain sync — reconciles the UTXO cache with the server's unspent sets."""

from photonic_chain.sync.engine import ChainSyncEngine, ScriptSyncState, SyncResult, TrackedScript

__all__ = ["ChainSyncEngine", "ScriptSyncState", "SyncResult", "TrackedScript"]
