"""
Zone command models.

Commands arrive as JSON objects naming the command in ``command`` (or
``Command``), in snake_case or camelCase, with parameters alongside:

    {"command": "playBackground", "file": "music/intro.mp3", "adjustVolume": -20}

parse_command() normalises the name, resolves aliases, and validates the
parameters into one of the models below.
"""
import re
from typing import Any, ClassVar, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from propfx.errors import UnknownCommand


class ZoneCommand(BaseModel):
    """Base for all zone commands. Unknown keys are ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: ClassVar[str] = ""


class PlayBackgroundMusic(ZoneCommand):
    name: ClassVar[str] = "play_background_music"

    file: str = Field(validation_alias=AliasChoices("file", "audio"))
    volume: float | None = None
    adjust_volume: float | None = Field(None, alias="adjustVolume")
    loop: bool = True
    skip_ducking: bool = Field(False, alias="skipDucking")


class StopBackgroundMusic(ZoneCommand):
    name: ClassVar[str] = "stop_background_music"


class SetVolume(ZoneCommand):
    name: ClassVar[str] = "set_volume"

    volume: float
    type: Literal["background", "speech", "effects", "video"] = "background"


class PlaySpeech(ZoneCommand):
    name: ClassVar[str] = "play_speech"

    file: str = Field(validation_alias=AliasChoices("file", "audio"))
    volume: float | None = None
    duck_volume: float | None = Field(None, alias="duckVolume")


class PlaySoundEffect(ZoneCommand):
    name: ClassVar[str] = "play_sound_effect"

    file: str = Field(validation_alias=AliasChoices("file", "audio"))
    volume: float | None = None


class GetStatus(ZoneCommand):
    name: ClassVar[str] = "get_status"


class PlayVideo(ZoneCommand):
    name: ClassVar[str] = "play_video"

    file: str = Field(validation_alias=AliasChoices("file", "video"))
    channel: str | None = None
    volume: float | None = None
    adjust_volume: float | None = Field(None, alias="adjustVolume")


class StopVideo(ZoneCommand):
    name: ClassVar[str] = "stop_video"


class StopAll(ZoneCommand):
    name: ClassVar[str] = "stop_all"


class PauseBackgroundMusic(ZoneCommand):
    name: ClassVar[str] = "pause_background_music"


class ResumeBackgroundMusic(ZoneCommand):
    name: ClassVar[str] = "resume_background_music"


class PauseSpeech(ZoneCommand):
    name: ClassVar[str] = "pause_speech"


class ResumeSpeech(ZoneCommand):
    name: ClassVar[str] = "resume_speech"


class SkipSpeech(ZoneCommand):
    name: ClassVar[str] = "skip_speech"


class StopSpeech(ZoneCommand):
    name: ClassVar[str] = "stop_speech"


class ClearSpeechQueue(ZoneCommand):
    name: ClassVar[str] = "clear_speech_queue"


class Duck(ZoneCommand):
    name: ClassVar[str] = "duck"

    ducking: float | None = None


class Unduck(ZoneCommand):
    name: ClassVar[str] = "unduck"

    duck_id: str | None = Field(None, validation_alias=AliasChoices("duck_id", "duckId"))


class SetDuckingAdjustment(ZoneCommand):
    name: ClassVar[str] = "set_ducking_adjustment"

    # validated by the zone so non-numbers get a domain error
    adjust_value: Any = Field(validation_alias=AliasChoices("adjustValue", "adjust_value", "duckingAdjust"))


class PauseVideo(ZoneCommand):
    name: ClassVar[str] = "pause_video"


class ResumeVideo(ZoneCommand):
    name: ClassVar[str] = "resume_video"


class SkipVideo(ZoneCommand):
    name: ClassVar[str] = "skip_video"


class PauseAll(ZoneCommand):
    name: ClassVar[str] = "pause_all"


class ResumeAll(ZoneCommand):
    name: ClassVar[str] = "resume_all"


class SetImage(ZoneCommand):
    name: ClassVar[str] = "set_image"

    file: str = Field(validation_alias=AliasChoices("file", "image"))
    channel: str | None = None


COMMANDS: dict[str, type[ZoneCommand]] = {
    model.name: model
    for model in (
        PlayBackgroundMusic, StopBackgroundMusic, PauseBackgroundMusic, ResumeBackgroundMusic,
        SetVolume, SetDuckingAdjustment, Duck, Unduck,
        PlaySpeech, PauseSpeech, ResumeSpeech, SkipSpeech, StopSpeech, ClearSpeechQueue,
        PlaySoundEffect, GetStatus,
        PlayVideo, StopVideo, PauseVideo, ResumeVideo, SkipVideo, SetImage,
        StopAll, PauseAll, ResumeAll,
    )
}

ALIASES = {
    "play_background": "play_background_music",
    "stop_background": "stop_background_music",
    "pause_background": "pause_background_music",
    "resume_background": "resume_background_music",
    "play_effect": "play_sound_effect",
    "play_audio_fx": "play_sound_effect",
    "get_state": "get_status",
}


def normalize_command_name(raw) -> str:
    """playBackground -> play_background_music, playAudioFX -> play_sound_effect."""
    if not isinstance(raw, str):
        return ""
    snake = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", raw.strip())
    snake = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", snake).lower()
    return ALIASES.get(snake, snake)


def command_name(message) -> str:
    """Best-effort command name for replies and error messages."""
    if isinstance(message, dict):
        raw = message.get("command", message.get("Command"))
        if isinstance(raw, str):
            return raw
    return "unknown"


def parse_command(message) -> ZoneCommand:
    """
    Validate a raw command message.

    Raises:
        UnknownCommand: Not an object, or no/unknown command name.
        pydantic.ValidationError: Missing or malformed parameters.
    """
    if not isinstance(message, dict):
        raise UnknownCommand(message)
    raw = message.get("command", message.get("Command"))
    model = COMMANDS.get(normalize_command_name(raw))
    if model is None:
        raise UnknownCommand(raw)
    params = {k: v for k, v in message.items() if k not in ("command", "Command")}
    return model.model_validate(params)
