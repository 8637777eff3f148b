from protoshell.sessions.manager import InteractiveSession, InteractiveSessionManager, SessionHandlers

__all__ = ["InteractiveSession", "InteractiveSessionManager", "SessionHandlers"]
