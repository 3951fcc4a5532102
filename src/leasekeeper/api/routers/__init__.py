"""HTTP routers for leasekeeper."""

from leasekeeper.api.routers import status

__all__ = ["status"]
