"""
vhostguard - modelo de dos usuarios (dueño del código / runtime) para docroots web.
"""

__version__ = "1.0.0"
