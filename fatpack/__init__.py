"""
fatpack packages a modular Python application into a single executable zip
archive and manages the lifecycle of the packaged or in-place application.
"""

__version__ = "1.0.0"
