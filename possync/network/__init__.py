from .ws_local import StatusBridge

__all__ = ['StatusBridge']
