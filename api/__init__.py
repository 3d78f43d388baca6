# api/__init__.py
"""
HTTP surface of the engine.
"""
