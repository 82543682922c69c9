"""Session runtime: registry, offline queue, dispatch and connection lifecycle."""
