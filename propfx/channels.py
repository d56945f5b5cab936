"""
Audio channel map parser.

A zone's audio_channel_map names the output channels media can be routed to,
each with the engine variables it substitutes into the engine arguments:

    main; DEVICE=hw:1,0; CHMASK=2; rear; DEVICE='alsa/plug:rear';

The compact form ``main DEVICE=hw:1,0 CHMASK=2; rear DEVICE=hw:2,0;`` is
accepted too: a bare token followed by ``=`` is always an assignment to the
most recent channel, any other token opens a new channel. Values and channel
names are bare atoms (letters, digits, ``_:,.``) or quoted strings. Single
quoted strings are taken literally, double quoted strings are JSON strings.

Engine argument templates reference variables as ``$DEVICE`` / ``$CHMASK``.
"""
import json
import re

from propfx.errors import ConfigParseError

CHANNEL_VARIABLES = {"DEVICE": "auto", "CHMASK": "6"}

_TOKEN_RE = re.compile(
    r"""'(?:[^'\\]|\\.)*'"""
    r'''|"(?:[^"\\]|\\.)*"'''
    r"|\w[\w:,.]*"
    r"|[;=]"
)
_VAR_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")
_ATOM_RE = re.compile(r"^\w[\w:,.]*$")
_SQUOTED_RE = re.compile(r"^'((?:[^'\\]|\\.)*)'$")
_DQUOTED_RE = re.compile(r'^"(?:[^"\\]|\\.)*"$')


def _atom(token: str | None) -> str | None:
    """Return the value of an atom or quoted token, None if it is neither."""
    if token is None:
        return None
    if _ATOM_RE.match(token):
        return token
    m = _SQUOTED_RE.match(token)
    if m:
        return m.group(1)
    if _DQUOTED_RE.match(token):
        try:
            return json.loads(token)
        except ValueError:
            return None
    return None


def parse_channel_map(source: str, variables: dict | None = None) -> dict[str, dict[str, str]]:
    """
    Parse a channel map definition.

    Args:
        source: The audio_channel_map string.
        variables: Allowed variable names and their defaults.

    Returns:
        An insertion-ordered dict: channel name -> {variable: value}. Every
        channel carries all allowed variables, defaults overlaid with its own
        assignments.

    Raises:
        ConfigParseError: On any grammar violation.
    """
    if variables is None:
        variables = CHANNEL_VARIABLES
    defaults = {name: str(value) for name, value in variables.items() if _VAR_RE.match(name)}
    tokens = [m.group(0) for m in _TOKEN_RE.finditer(source or "")]

    result: dict[str, dict[str, str]] = {}
    channel: str | None = None
    values: dict[str, str] | None = None

    def flush() -> None:
        if values is not None:
            result[channel] = values

    i = 0
    while i < len(tokens):
        token = tokens[i]
        following = tokens[i + 1] if i + 1 < len(tokens) else None

        if token == ";":
            if values is None:
                raise ConfigParseError(f"expected a channel definition before ';' in {source!r}")
            i += 1
        elif token == "=":
            raise ConfigParseError(f"expected a variable name before '=' in {source!r}")
        elif following == "=":
            if values is None:
                raise ConfigParseError(f"expected a channel name before {token!r}")
            if not _VAR_RE.match(token):
                raise ConfigParseError(f"expected a variable name, got {token!r}")
            if token not in defaults:
                raise ConfigParseError(f"unknown variable name: {token}")
            value = _atom(tokens[i + 2] if i + 2 < len(tokens) else None)
            if value is None:
                raise ConfigParseError(f"expected a value for {token}")
            values[token] = value
            i += 3
        else:
            name = _atom(token)
            if not name:
                raise ConfigParseError(f"expected a channel definition, got {token!r}")
            if values is not None and _VAR_RE.match(token) and token in defaults:
                raise ConfigParseError(f"expected =value after {token}")
            flush()
            channel, values = name, dict(defaults)
            i += 1

    flush()
    return result


def substitute_args(args: list[str], values: dict[str, str]) -> list[str]:
    """Replace $VAR references in engine argument templates."""
    out = []
    for arg in args:
        # longest names first so $CHMASK2 is never split as $CHMASK + "2"
        for name in sorted(values, key=len, reverse=True):
            arg = arg.replace("$" + name, values[name])
        out.append(arg)
    return out
