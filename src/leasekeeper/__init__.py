"""leasekeeper: lease-based leader election sidecar with an HTTP status API."""

__version__ = "0.1.0"
