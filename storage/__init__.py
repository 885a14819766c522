"""storage/ -- Snapshot persistence for BreachTracker.

Layer rule: storage/ imports only from core/ (models and config).
It knows nothing about incidents/ or api/.
"""
