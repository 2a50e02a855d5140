"""RoomStage virtual-staging backend."""

__version__ = "0.1.0"
