from .buffer import SignalBuffer, SignalWindow, BufferSet

__all__ = ['SignalBuffer', 'SignalWindow', 'BufferSet']
