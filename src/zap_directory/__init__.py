"""NIP-05 directory of zap senders, republished to Blossom servers."""

__version__ = "0.1.0"
