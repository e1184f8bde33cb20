"""replicaplane — fan a workload template out to selected clusters."""

__version__ = "0.1.0"
