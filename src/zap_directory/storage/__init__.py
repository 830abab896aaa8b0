"""Blossom blob storage client."""
