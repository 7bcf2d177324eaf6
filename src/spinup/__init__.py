"""
SpinUp - Game Server Orchestration Core

Provisions, starts, stops and destroys game-server containers, and lets
operators browse, edit and upload files inside them safely.
"""

__version__ = "0.1.0"
__author__ = "Systems Engineering Portfolio"
