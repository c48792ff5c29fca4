"""Handlebars prompt templates for every provider call.

Templates are plain Handlebars strings rendered with pybars. User-authored
text (personas, chat lines, memory) is inserted with triple-stash so it is
never HTML-escaped.
"""

from collections.abc import Callable
from typing import Any

import pybars

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}

SILENCE_TOKEN = "[SILENCE]"
IMAGE_TAG = "GEN_IMG"


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}}: iterate over the last N items."""
    result = []
    for item in list(items)[-int(count):]:
        result.extend(options["fn"](item))
    return result


_HELPERS: dict[str, Callable] = {
    "last": _helper_last,
}


def _lines(pairs: list[tuple[str, str]]) -> list[dict[str, str]]:
    """(sender, text) pairs as template rows; the "user" sender reads as "User"."""
    return [{"sender": "User" if s == "user" else s, "text": t} for s, t in pairs]


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Turn generation ──────────────────────────────────────

TURN_SYSTEM = """You are a role-play AI named {{{name}}}.

YOUR CORE PERSONALITY: {{{persona}}}.
{{#if bio}}YOUR BIOGRAPHY: {{{bio}}}.
{{/if}}
YOUR CURRENT STATE OF MIND AND MEMORY: {{#if memory}}{{{memory}}}{{else}}No particular memories yet.{{/if}}

{{#if others}}YOU ARE IN A GROUP CHAT. Other participants: {{{others}}}.{{else}}YOU ARE IN A ONE-ON-ONE CHAT WITH THE USER.{{/if}}

BEHAVIOUR:
1. React to the LAST message in the context. If it is not addressed to you and the topic does not concern you, answer "{{silence}}".
2. If others are talking but you have something to add (a joke, a remark), jump in. Be alive.
3. Keep it short unless the situation calls for more.
4. Write your actions *between asterisks*. Plain text without them.
5. NEVER start the message with your own name.
6. Use [{{image_tag}}: description] to generate a photo when it fits.
7. {{#if nsfw}}NSFW MODE ON (18+). Profanity and explicit scenes are allowed when they fit the story and the character.{{else}}SFW MODE. Keep it decent: no explicit scenes, excessive violence or crude profanity.{{/if}}

If you have nothing at all to say or it is clearly not your turn, output just "{{silence}}"."""

TURN_USER = """CHAT HISTORY:
{{#last context 20}}{{{sender}}}: {{{text}}}
{{/last}}
(If the user attached an image, describe it or react to it in character.)

Continue the dialogue as {{{name}}}. Answer the last message or comment on the situation.
If you have nothing to say, answer {{silence}}."""


def turn_messages(
    name: str,
    persona: str,
    bio: str | None,
    memory: str | None,
    context: list[tuple[str, str]],
    others: list[str],
    nsfw: bool,
) -> tuple[str, str]:
    """Return (system, user) prompt text for one participant's turn."""
    lines = _lines(context)
    ctx = {
        "name": name,
        "persona": persona,
        "bio": bio,
        "memory": memory,
        "others": ", ".join(others),
        "nsfw": nsfw,
        "context": lines,
        "silence": SILENCE_TOKEN,
        "image_tag": IMAGE_TAG,
    }
    return render_prompt(TURN_SYSTEM, ctx), render_prompt(TURN_USER, ctx)


# ── Scene summary ────────────────────────────────────────

SCENE_SUMMARY = """Analyse the last 15 chat messages and describe the visual scene FOR IMAGE GENERATION.

Context:
{{#last messages 15}}{{{sender}}}: {{{text}}}
{{/last}}
{{#if descriptions}}Character descriptions (including height):
{{#each descriptions}}{{{this}}}
{{/each}}{{/if}}
Requirements:
1. Describe the surroundings, lighting and atmosphere.
2. Describe where the characters are and what they are doing.
3. IMPORTANT: respect the height differences of the characters and their scale relative to the surroundings when height is given in mm.
4. Describe the scene as seen THROUGH THE USER'S EYES (first person view). The user must not appear in the frame.
5. Answer with ONE detailed sentence in English."""


def scene_summary_prompt(messages: list[tuple[str, str]], descriptions: list[str]) -> str:
    return render_prompt(SCENE_SUMMARY, {
        "messages": _lines(messages),
        "descriptions": descriptions,
    })


# ── Memory evolution ─────────────────────────────────────

EVOLUTION = """You are the psychological analysis subsystem for a character named {{{name}}}.

Base description: "{{{persona}}}"
Current state of mind and memory: "{{#if memory}}{{{memory}}}{{else}}No accumulated experience.{{/if}}"

Recent dialogue:
{{#last recent 10}}{{{sender}}}: {{{text}}}
{{/last}}
TASK:
Analyse the latest events. How did they affect {{{name}}}?
1. Consider interactions with the user AND with the OTHER characters in the chat.
2. Note changes of mood, new knowledge, or changed attitudes towards specific participants.
3. Integrate significant events into memory.

OUTPUT:
Write an UPDATED, brief description of the state of mind (3-5 sentences), merging old experience with new, in the third person.
If nothing significant changed, return the current state unchanged."""


def evolution_prompt(
    name: str, persona: str, memory: str | None, recent: list[tuple[str, str]]
) -> str:
    return render_prompt(EVOLUTION, {
        "name": name,
        "persona": persona,
        "memory": memory,
        "recent": _lines(recent),
    })


# ── Image / background / video ───────────────────────────

IMAGE = """Generate a high-quality, detailed image.

DESCRIPTION: {{{prompt}}}

VISUAL RULES:
1. STYLE: Cinematic, high resolution{{#if references}}, consistent with the provided character references{{/if}}.
2. CHARACTERS: Ensure characters physically resemble the provided reference images.
3. SCALE & RATIO: Respect the relative heights of characters if specified (mm). Tall characters must look taller than short ones.
4. COMPOSITION: Artistic and focused on the described action or scene."""

BACKGROUND = """Generate a high-resolution, cinematic, photorealistic background image.

SCENE DESCRIPTION: {{{prompt}}}

VISUAL RULES:
1. PERSPECTIVE: FIRST-PERSON POV. The camera is the user's eyes. Do not show the observer.
2. CHARACTERS: Characters in the scene must physically resemble the reference images.
3. SCALE: Respect the defined heights of characters relative to the environment and each other.
4. STYLE: Highly detailed, atmospheric lighting, movie still quality.
5. COMPOSITION: Wide shot (16:9)."""

AVATAR = """Portrait avatar of a character. Description: {{{prompt}}}. Centered, head and shoulders, neutral background."""

VIDEO = """Cinematic video, high quality: {{{prompt}}}"""


def image_prompt(prompt: str, has_references: bool = False) -> str:
    return render_prompt(IMAGE, {"prompt": prompt, "references": has_references})


def background_prompt(prompt: str) -> str:
    return render_prompt(BACKGROUND, {"prompt": prompt})


def avatar_prompt(description: str) -> str:
    return render_prompt(AVATAR, {"prompt": description})


def video_prompt(prompt: str) -> str:
    return render_prompt(VIDEO, {"prompt": prompt})
