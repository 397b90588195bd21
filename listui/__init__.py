"""
listui: a terminal music player for local folders and YouTube playlists.
"""

__version__ = "0.4.0"
