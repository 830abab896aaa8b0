"""NIP-01 relay client and replaceable-event loaders."""
