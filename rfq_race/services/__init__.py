"""
services/ — Race engine business logic.

timezone_scheduler and score_supplier are pure; everything else works on
a SQLAlchemy session and returns {"success": ...} result dicts.
"""
