"""Conversation pipeline: turns, streaming, directives, media, memory, speech.

Per user turn (TurnScheduler):
  user message → for each participant in order:
    placeholder → StreamAccumulator → parse_reply → finalize | remove
    → EvolutionUpdater.spawn (detached)

Out of band:
  MediaJob.generate(chat, "photo" | "video")   placeholder → summary → render
  MediaJob.generate_background(chat)
  SpeechService.speak(chat, message)

Directive grammar (parse_reply):
  [SILENCE]            participant stays quiet, nothing is kept
  [GEN_IMG: prompt]    directive is cut from the text, image attached
"""

from .evolution import EvolutionUpdater  # noqa: F401
from .media import MediaGenerationFailure, MediaJob  # noqa: F401
from .orchestrator import TurnOutcome, TurnScheduler, TurnState  # noqa: F401
from .speech import SpeechService  # noqa: F401
from .stream import StreamAccumulator  # noqa: F401
from .tags import (  # noqa: F401
    ImageDirective,
    PlainText,
    SilenceDirective,
    parse_reply,
    strip_for_speech,
)
