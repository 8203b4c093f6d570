import asyncio

import httpx
import pytest
from conftest import json_transport, request_json

from myth_story.errors import (
    EmptyPrompt,
    MalformedUpstreamResponse,
    NetworkFailure,
    UpstreamRejected,
)
from myth_story.models import AudioSource, StoryLength, StoryRequest
from myth_story.narration import NullAudioSink
from myth_story.orchestrator import GenerationOrchestrator, StoryPhase
from myth_story.relay_client import StoryRelayClient, VoiceRelayClient
from myth_story.settings import Settings

BASE = "https://relay.example"
REQUEST = StoryRequest(mythology="Greek", theme="Heroism", length="short")


class TestStoryRelayClient:
    def test_generate_story(self):
        transport = json_transport(lambda req: (200, {
            "title": "The Trials of Odysseus",
            "story": "Long ago...",
            "storyArcs": [{"title": "Departure", "content": "He set sail."}],
        }))
        client = StoryRelayClient(BASE, "relay-key", transport=transport)

        story = asyncio.run(client.generate_story(REQUEST))

        assert story.title == "The Trials of Odysseus"
        assert story.story_arcs[0].title == "Departure"
        assert story.request == REQUEST
        sent = transport.calls[0]
        assert str(sent.url) == "https://relay.example/functions/v1/generate-story"
        assert sent.headers["authorization"] == "Bearer relay-key"
        assert request_json(sent) == {"mythology": "Greek", "theme": "Heroism", "length": "short"}

    def test_quota_exceeded(self):
        transport = json_transport(lambda req: (429, {"error": "rate limited"}))
        client = StoryRelayClient(BASE, "relay-key", transport=transport)

        with pytest.raises(UpstreamRejected) as exc:
            asyncio.run(client.generate_story(REQUEST))

        assert exc.value.quota_exceeded
        assert "quota" in exc.value.message

    def test_upstream_error_message_is_kept(self):
        transport = json_transport(lambda req: (500, {"error": "OpenAI API key is invalid", "title": "", "story": ""}))
        client = StoryRelayClient(BASE, "relay-key", transport=transport)

        with pytest.raises(UpstreamRejected, match="OpenAI API key is invalid"):
            asyncio.run(client.generate_story(REQUEST))

    @pytest.mark.parametrize("body", [
        {"title": "", "story": "text"},
        {"title": "A title"},
        {"error": "Something broke"},
        {"title": "T", "story": "S", "storyArcs": [{"title": "no content"}]},
    ])
    def test_malformed_bodies(self, body):
        client = StoryRelayClient(BASE, "relay-key", transport=json_transport(lambda req: (200, body)))
        with pytest.raises(MalformedUpstreamResponse):
            asyncio.run(client.generate_story(REQUEST))

    def test_non_json_body(self):
        client = StoryRelayClient(BASE, "relay-key", transport=json_transport(lambda req: (200, "<html>")))
        with pytest.raises(MalformedUpstreamResponse):
            asyncio.run(client.generate_story(REQUEST))

    def test_open_relay_needs_no_key(self):
        transport = json_transport(lambda req: (200, {"title": "T", "story": "S"}))
        client = StoryRelayClient(BASE, "", transport=transport)

        story = asyncio.run(client.generate_story(REQUEST))

        assert story.title == "T"
        assert "authorization" not in transport.calls[0].headers

    def test_per_call_key_overrides_configured_one(self):
        transport = json_transport(lambda req: (200, {"title": "T", "story": "S"}))
        client = StoryRelayClient(BASE, "", transport=transport)
        asyncio.run(client.generate_story(REQUEST, api_key=" user-key "))
        assert transport.calls[0].headers["authorization"] == "Bearer user-key"

    def test_network_failure(self):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = StoryRelayClient(BASE, "relay-key", transport=httpx.MockTransport(boom))
        with pytest.raises(NetworkFailure):
            asyncio.run(client.generate_story(REQUEST))


class TestVoiceRelayClient:
    def test_generate_voice(self):
        transport = json_transport(lambda req: (200, {"audioContent": "SUQz", "format": "mp3"}))
        client = VoiceRelayClient(BASE, "relay-key", transport=transport)

        audio = asyncio.run(client.generate_voice("Sing, O Muse", voice_id="v-1"))

        assert audio.source == AudioSource.SYNTHESIZED
        assert audio.audio_bytes() == b"ID3"
        assert request_json(transport.calls[0]) == {"text": "Sing, O Muse", "voiceId": "v-1"}

    def test_blank_text_rejected_before_call(self):
        transport = json_transport(lambda req: (200, {}))
        client = VoiceRelayClient(BASE, "relay-key", transport=transport)
        with pytest.raises(EmptyPrompt, match="Text content is required"):
            asyncio.run(client.generate_voice("  "))
        assert transport.calls == []

    def test_missing_audio(self):
        client = VoiceRelayClient(BASE, "relay-key", transport=json_transport(lambda req: (200, {"format": "mp3"})))
        with pytest.raises(MalformedUpstreamResponse):
            asyncio.run(client.generate_voice("Sing"))


def test_story_length_defaults():
    assert StoryRequest(mythology="Egyptian", length="").length == StoryLength.MEDIUM
    assert StoryLength.LONG.reading_minutes == 15


def test_default_settings_reach_an_open_relay(tmp_path):
    settings = Settings(relay_url=BASE, saved_stories_path=tmp_path / "stories.json")
    orch = GenerationOrchestrator.from_settings(settings, sink=NullAudioSink())
    transport = json_transport(lambda req: (200, {"title": "Ra's Journey", "story": "Each night..."}))
    orch.story_client.transport = transport

    story = asyncio.run(orch.generate_story({"mythology": "Egyptian"}))

    assert story.title == "Ra's Journey"
    assert orch.phase == StoryPhase.READY
    assert "authorization" not in transport.calls[0].headers
