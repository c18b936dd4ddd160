"""Domain and realtime services imported by HTTP routes, socket handlers
and background tasks, keeping transport concerns out of core mechanics.
"""
