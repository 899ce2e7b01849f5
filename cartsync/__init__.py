"""
Cart state reconciliation: local store, merge engine and sync coordinator.
"""
