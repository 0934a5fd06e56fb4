"""SignalMesh — rendezvous and WebRTC signaling service for P2P peers."""

__version__ = "0.1.0"
