"""Chat channel implementations."""

from morpheum.channels.matrix import MatrixChannel, MatrixClient, MatrixRoomStateStore
from morpheum.channels.projects import ProjectRoomManager

__all__ = ["MatrixChannel", "MatrixClient", "MatrixRoomStateStore", "ProjectRoomManager"]
