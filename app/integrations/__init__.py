"""
Integrations package initialization.
Exports the collaborator interfaces; concrete adapters are imported where wired
(``app.runtime``) so the browser and chain stacks load only when used.
"""
from .base import BlockchainClient, BrowserAutomation

__all__ = [
    "BlockchainClient",
    "BrowserAutomation",
]
