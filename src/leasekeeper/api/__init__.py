"""Status HTTP API for leasekeeper."""

from leasekeeper.api.app import create_app
from leasekeeper.api.state import LeaderState, ServerPhase, consume_leadership

__all__ = ["LeaderState", "ServerPhase", "consume_leadership", "create_app"]
