"""
Pure decision logic of the controller.

Nothing in this package performs I/O:
- state_resolver: collapses CR and pod snapshots into a ClusterState
"""
