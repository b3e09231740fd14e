"""Task store, handler lock, recovery, completion and backlog."""
