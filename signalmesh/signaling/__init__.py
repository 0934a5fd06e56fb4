"""Peer registry, discovery, signal relay and liveness tracking."""
