"""Ralph LSP client bootstrap - finds the project root and manages ralph-lsp.jar."""

from .client import CLIENT_ID
from .manager import ClientManager, ClientState

__all__ = ["ClientManager", "ClientState", "mount"]


async def mount(coordinator, config: dict):
    """Activate the Ralph LSP client for the coordinator's workspace.

    Returns cleanup function to stop the client on deactivation.
    """
    manager = ClientManager(coordinator, config)
    coordinator.mount_points["clients"][CLIENT_ID] = manager
    await manager.activate()
    # Return cleanup function so coordinator can stop the server on deactivation
    return manager.deactivate
