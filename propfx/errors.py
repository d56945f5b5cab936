"""
propfx errors — domain-specific error types.

Error hierarchy:
    PropFxError (base)
    ├── IpcError
    │   ├── SocketTimeout
    │   └── IpcCommandError
    ├── SocketNotReady
    ├── EngineCrash
    ├── ConfigParseError
    │   └── UnknownChannel
    ├── ConcurrencyLimitExceeded
    ├── VolumeOutOfRange
    └── UnknownCommand

Transport and process errors are logged and survived by the zone layer.
ConfigParseError is fatal at load time. The rest are reported per command.
"""


class PropFxError(Exception):
    """Base error for everything raised by propfx."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class IpcError(PropFxError):
    """Engine IPC socket could not be used (missing, refused, closed)."""

    def __init__(self, socket_path: str, message: str, details: dict | None = None):
        super().__init__(f"{socket_path}: {message}", details)
        self.socket_path = socket_path


class SocketTimeout(IpcError):
    """No matching reply or event arrived before the deadline."""

    def __init__(self, socket_path: str, timeout: float, what: str = "response"):
        super().__init__(socket_path, f"timed out after {timeout:g}s waiting for {what}")
        self.timeout = timeout


class IpcCommandError(IpcError):
    """The engine answered, but with an error status other than "success"."""

    def __init__(self, socket_path: str, command: list, error: str):
        super().__init__(socket_path, f"command {command!r} failed: {error}")
        self.command = command
        self.error = error


class SocketNotReady(PropFxError):
    """An engine process never created its IPC socket."""

    def __init__(self, purpose: str, socket_path: str):
        super().__init__(f"{purpose} engine socket {socket_path} never appeared")
        self.purpose = purpose
        self.socket_path = socket_path


class EngineCrash(PropFxError):
    """An engine process exited while it was in use."""

    def __init__(self, purpose: str, returncode: int | None = None):
        super().__init__(f"{purpose} engine exited (code {returncode})")
        self.purpose = purpose
        self.returncode = returncode


class ConfigParseError(PropFxError):
    """Configuration is malformed. Raised at load time only."""


class UnknownChannel(ConfigParseError):
    """A command named a channel that is not in the track's channel map."""

    def __init__(self, channel: str, known: list[str]):
        super().__init__(
            f"unknown channel {channel!r} (known: {', '.join(known) or 'none'})"
        )
        self.channel = channel
        self.known = known


class ConcurrencyLimitExceeded(PropFxError):
    """A bounded pool is full. EffectPool.play() logs it and skips the effect."""

    def __init__(self, limit: int):
        super().__init__(f"concurrency limit of {limit} reached")
        self.limit = limit


class VolumeOutOfRange(PropFxError):
    """A set_volume command carried a level outside 0..100."""

    def __init__(self, volume):
        super().__init__(f"volume {volume!r} outside 0..100")
        self.volume = volume


class UnknownCommand(PropFxError):
    """A command message named no known command."""

    def __init__(self, command):
        super().__init__(f"unknown command {command!r}")
        self.command = command
