"""
PlantBuddy client core: session, cache and mutation engine for the plant
management desktop client.
"""

__version__ = "1.0.0"
