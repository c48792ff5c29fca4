"""In-band directives in finalized model output.

A reply is parsed into exactly one of:

  SilenceDirective           empty reply, or it contains [SILENCE]
  ImageDirective(text, p)    first [GEN_IMG: p] found; text is the reply
                             with that directive cut out and trimmed
  PlainText(text)            anything else

Action markup (*waves*) is a display convention and is left untouched.
"""

import re
from dataclasses import dataclass

from persona_chat.prompts import IMAGE_TAG, SILENCE_TOKEN

_IMAGE_DIRECTIVE = re.compile(r"\[" + IMAGE_TAG + r":\s*(.*?)\]", re.DOTALL)
_ACTION_MARKUP = re.compile(r"\*[^*]+\*")
_BRACKETED = re.compile(r"\[.*?\]", re.DOTALL)


@dataclass(frozen=True)
class PlainText:
    text: str


@dataclass(frozen=True)
class SilenceDirective:
    pass


@dataclass(frozen=True)
class ImageDirective:
    text: str
    prompt: str


Directive = PlainText | SilenceDirective | ImageDirective


def parse_reply(text: str) -> Directive:
    """Classify a finalized reply. Only the first image directive is honored."""
    if not text or not text.strip() or SILENCE_TOKEN in text:
        return SilenceDirective()
    match = _IMAGE_DIRECTIVE.search(text)
    if match:
        remaining = (text[:match.start()] + text[match.end():]).strip()
        return ImageDirective(text=remaining, prompt=match.group(1).strip())
    return PlainText(text)


def strip_for_speech(text: str) -> str:
    """Drop *actions* and [directives] so only spoken words remain."""
    return _BRACKETED.sub("", _ACTION_MARKUP.sub("", text)).strip()
