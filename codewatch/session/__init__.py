from codewatch.session.state_machine import ExtractionSession, SessionState

__all__ = ["ExtractionSession", "SessionState"]
