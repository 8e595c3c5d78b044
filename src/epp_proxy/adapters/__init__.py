"""Frame adapters: whole EPP frames over asyncio streams."""

from epp_proxy.adapters.base import FrameAdapter
from epp_proxy.adapters.stream import StreamFrameAdapter

__all__ = ["FrameAdapter", "StreamFrameAdapter"]
