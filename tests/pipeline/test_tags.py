"""Directive parsing tests."""

from persona_chat.pipeline import (
    ImageDirective,
    PlainText,
    SilenceDirective,
    parse_reply,
    strip_for_speech,
)


def test_plain_text():
    assert parse_reply("Hello *waves*") == PlainText("Hello *waves*")


def test_silence_token_anywhere():
    assert parse_reply("[SILENCE]") == SilenceDirective()
    assert parse_reply("Hmm. [SILENCE]") == SilenceDirective()


def test_empty_reply_is_silence():
    assert parse_reply("") == SilenceDirective()
    assert parse_reply("   \n") == SilenceDirective()


def test_image_directive_is_cut_out():
    result = parse_reply("Here you go! [GEN_IMG: a sunset over the bay] Enjoy.")
    assert result == ImageDirective(text="Here you go!  Enjoy.", prompt="a sunset over the bay")


def test_only_first_image_directive_counts():
    result = parse_reply("[GEN_IMG: a cat] and [GEN_IMG: a dog]")
    assert isinstance(result, ImageDirective)
    assert result.prompt == "a cat"
    assert result.text == "and [GEN_IMG: a dog]"


def test_image_only_reply():
    assert parse_reply("[GEN_IMG: stars]") == ImageDirective(text="", prompt="stars")


def test_silence_wins_over_image():
    assert parse_reply("[GEN_IMG: x] [SILENCE]") == SilenceDirective()


def test_strip_for_speech():
    assert strip_for_speech("*sighs* Fine. [GEN_IMG: a frown] Let's go.") == "Fine.  Let's go."
    assert strip_for_speech("*bows*") == ""
