"""
codewatch/errors.py
Exception taxonomy.

  CaptureUnavailable     — no capture support / permission denied. Reported, never retried.
  BackendTransportError  — network or service failure talking to the backend.
  BackendParseError      — backend answered, but not with valid schema JSON.
  InvalidRecordError     — candidate code does not reduce to six digits. Dropped silently.
  SubmissionRejected     — manual submission while another one is still in flight.

Live capture ticks swallow BackendError; one-shot submissions let it through.
"""


class CodewatchError(Exception):
    """Base class for all codewatch errors."""


class CaptureUnavailable(CodewatchError):
    pass


class BackendError(CodewatchError):
    pass


class BackendTransportError(BackendError):
    pass


class BackendParseError(BackendError):
    pass


class InvalidRecordError(CodewatchError):
    pass


class SubmissionRejected(CodewatchError):
    pass
