#!/usr/bin/env python3
"""
Unit tests for the admission content checks
"""

import pytest

from supportbot.common import messages
from supportbot.services.admission import policy
from supportbot.services.admission.events import InboundEvent, MediaType


class TestSpamDetection:
    """Spam patterns and bulk-content heuristics"""

    @pytest.mark.parametrize("text", [
        "gana dinero desde casa",
        "invierte en bitcoin hoy",
        "escribe a ventas@ofertas.com",
        "visita ofertas.example.com/promo",
        "llama al 55512345678 o al 55587654321",
        "hola!!!???!",
    ])
    def test_spam(self, text):
        assert policy.is_spam(text) is True

    @pytest.mark.parametrize("text", [
        "quiero una laptop para diseño",
        "cual es el precio?",
        "mi pedido es el 12345678",
        "hola!!",
    ])
    def test_not_spam(self, text):
        assert policy.is_spam(text) is False

    def test_punctuation_threshold(self):
        assert policy.is_spam("que?!?!?") is False
        assert policy.is_spam("que?!?!?!") is True


class TestKeywords:
    """Handoff and return-to-bot keywords"""

    def test_wants_human(self):
        assert policy.wants_human("quiero hablar con un agente")
        assert policy.wants_human("necesito una persona real")
        assert not policy.wants_human("quiero una laptop")

    def test_wants_bot(self):
        assert policy.wants_bot("volver al bot")
        assert policy.wants_bot("quiero el asistente virtual")
        assert not policy.wants_bot("gracias")


class TestShortcuts:
    """Canned answers that bypass the generator"""

    def test_greeting_is_exact_match(self):
        assert policy.shortcut_reply("hola") == messages.WELCOME
        assert policy.shortcut_reply("hola, tienen laptops?") is None

    def test_schedule(self):
        assert policy.shortcut_reply("horario") == messages.SCHEDULE

    def test_website(self):
        assert policy.shortcut_reply("cual es su pagina web") == messages.WEB_PAGE
        assert policy.shortcut_reply("tienen página web?") == messages.WEB_PAGE

    def test_website_needs_whole_word(self):
        assert policy.shortcut_reply("tienen webcam para laptop") is None
        assert policy.shortcut_reply("web?") == messages.WEB_PAGE

    def test_no_shortcut(self):
        assert policy.shortcut_reply("precio de la laptop x") is None


class TestMedia:
    """Media acknowledgement text"""

    def test_subtype_suffix(self):
        reply = policy.media_reply(MediaType.IMAGE)
        assert reply.startswith(messages.MEDIA_RECEIVED)
        assert reply.endswith(messages.MEDIA_SUFFIXES["image"])

    def test_voice_note(self):
        assert policy.media_reply(MediaType.VOICE).endswith(messages.MEDIA_SUFFIXES["ptt"])

    def test_unknown_subtype(self):
        assert policy.media_reply(MediaType.STICKER) == messages.MEDIA_RECEIVED
        assert policy.media_reply(None) == messages.MEDIA_RECEIVED

    def test_parse(self):
        assert MediaType.parse("image") is MediaType.IMAGE
        assert MediaType.parse("ptt") is MediaType.VOICE
        assert MediaType.parse("chat") is None
        assert MediaType.parse(None) is None
        assert MediaType.parse("location") is MediaType.OTHER


class TestInboundEvent:
    def test_normalized_text(self):
        async def reply(text):
            pass

        event = InboundEvent(message_id="1", sender_id="a", body="  HoLa  ", reply=reply)
        assert event.normalized_text == "hola"

        event = InboundEvent(message_id="2", sender_id="a", body=None, reply=reply)
        assert event.normalized_text == ""
