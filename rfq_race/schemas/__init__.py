"""
schemas/ — Pydantic request models for the RFQ race API

Validates request bodies before they reach the race services.
"""
