"""incidents/ -- Incident lifecycle package for BreachTracker.

Layer rule: incidents/ imports from core/ and storage/ only.
It does NOT import from api/. api/ and main.py import from incidents/,
not the other way around.
"""
