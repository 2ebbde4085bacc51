"""Core interfaces."""

from mediagen.core.interfaces.leader import LeaderElection

__all__ = ["LeaderElection"]
