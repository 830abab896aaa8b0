"""Nostr event helpers: keys, signing, zap receipts and list events."""
