import base64

import pytest
from fastapi.testclient import TestClient

from myth_story.app import create_app
from myth_story.errors import EmptyOrInvalidInput, MissingCredential, UpstreamRejected, quota_message
from myth_story.models import ImageResult, ModelTask, ModelTaskStatus

STORY = {
    "title": "The Trials of Odysseus",
    "story": "Long ago...",
    "storyArcs": [{"title": "Departure", "content": "He set sail."}],
}


@pytest.fixture
def relay(settings, mocker):
    app = create_app(settings)
    app.state.story_writer = mocker.MagicMock()
    app.state.story_writer.write_story = mocker.AsyncMock(
        side_effect=lambda req: {**STORY, "storyPrompt": req.model_dump(mode="json", exclude_none=True)}
    )
    app.state.voice = mocker.MagicMock()
    app.state.voice.tts_to_bytes = mocker.AsyncMock(return_value=b"ID3-audio")
    app.state.image_client = mocker.MagicMock()
    app.state.image_client.generate_image = mocker.AsyncMock(
        return_value=ImageResult(url="data:image/png;base64,AAAA", prompt="p", provider="stability")
    )
    app.state.model_client = mocker.MagicMock()
    app.state.model_client.submit = mocker.AsyncMock(
        return_value=ModelTask(task_id="task-1", status=ModelTaskStatus.PROCESSING)
    )
    app.state.model_client.check_status = mocker.AsyncMock(
        return_value=ModelTask(task_id="task-1", status=ModelTaskStatus.COMPLETED, glb_url="https://cdn.example/m.glb")
    )
    return app


@pytest.fixture
def client(relay):
    return TestClient(relay)


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["has_keys"] is True
    assert body["missing"] == []


def test_story_options(client):
    resp = client.get("/functions/v1/story-options")
    assert resp.status_code == 200
    body = resp.json()
    assert "Greek" in body["mythologies"]
    assert "Heroism" in body["themes"]
    assert body["lengths"] == [
        {"value": "short", "readingMinutes": 5},
        {"value": "medium", "readingMinutes": 10},
        {"value": "long", "readingMinutes": 15},
    ]


def test_preflight_succeeds(client):
    resp = client.options(
        "/functions/v1/generate-story",
        headers={
            "Origin": "https://myth.example",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "authorization, content-type, apikey, x-client-info",
        },
    )
    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] == "*"
    assert "apikey" in resp.headers["access-control-allow-headers"].lower()


class TestGenerateStory:
    def test_bare_request(self, client, relay):
        resp = client.post("/functions/v1/generate-story",
                           json={"mythology": "Greek", "theme": "Heroism", "length": "short"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["title"] == "The Trials of Odysseus"
        assert body["storyPrompt"]["mythology"] == "Greek"
        req = relay.state.story_writer.write_story.call_args.args[0]
        assert req.length.value == "short"

    def test_wrapped_request(self, client):
        resp = client.post("/functions/v1/generate-story", json={"storyPrompt": {"mythology": "Norse"}})
        assert resp.status_code == 200
        assert resp.json()["storyPrompt"]["length"] == "medium"

    def test_missing_mythology_is_400(self, client, relay):
        resp = client.post("/functions/v1/generate-story", json={"mythology": ""})
        assert resp.status_code == 400
        assert "mythology is required" in resp.json()["error"]
        relay.state.story_writer.write_story.assert_not_called()

    def test_quota_keeps_status(self, client, relay):
        relay.state.story_writer.write_story.side_effect = UpstreamRejected(
            quota_message("Story model"), status_code=429)
        resp = client.post("/functions/v1/generate-story", json={"mythology": "Greek"})
        assert resp.status_code == 429
        assert resp.json() == {"error": "Story model quota exceeded. Please try again later.", "title": "", "story": ""}

    def test_missing_key_is_500(self, client, relay):
        relay.state.story_writer.write_story.side_effect = MissingCredential("OPENAI_API_KEY is not set")
        resp = client.post("/functions/v1/generate-story", json={"mythology": "Greek"})
        assert resp.status_code == 500
        assert resp.json()["error"] == "OPENAI_API_KEY is not set"


class TestGenerateVoice:
    def test_returns_base64_audio(self, client, relay):
        resp = client.post("/functions/v1/generate-voice", json={"text": "Sing, O Muse", "voiceId": "v-1"})
        assert resp.status_code == 200
        body = resp.json()
        assert base64.b64decode(body["audioContent"]) == b"ID3-audio"
        assert body["format"] == "mp3"
        relay.state.voice.tts_to_bytes.assert_awaited_once_with("Sing, O Muse", voice_id="v-1", model_id=None)

    def test_blank_text(self, client, relay):
        resp = client.post("/functions/v1/generate-voice", json={"text": "   "})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Text content is required"}
        relay.state.voice.tts_to_bytes.assert_not_called()

    def test_upstream_failure_keeps_status(self, client, relay):
        relay.state.voice.tts_to_bytes.side_effect = UpstreamRejected(
            "Unauthorized", status_code=401, details={"detail": {"message": "Invalid API key"}})
        resp = client.post("/functions/v1/generate-voice", json={"text": "Sing, O Muse"})
        assert resp.status_code == 401
        body = resp.json()
        assert body["error"] == "Failed to generate audio"
        assert body["details"] == {"detail": {"message": "Invalid API key"}}


def test_generate_image(client, relay):
    resp = client.post("/functions/v1/generate-image", json={"prompt": "Zeus", "apiKey": "sk-user", "width": 512})
    assert resp.status_code == 200
    assert resp.json()["url"] == "data:image/png;base64,AAAA"
    relay.state.image_client.generate_image.assert_awaited_once_with("Zeus", api_key="sk-user", width=512, height=1024)


def test_generate_model_and_status(client, relay):
    resp = client.post("/functions/v1/generate-model", json={"prompt": "Perseus"})
    assert resp.json() == {"taskId": "task-1", "status": "processing"}

    resp = client.post("/functions/v1/model-status", json={"taskId": "task-1"})
    body = resp.json()
    assert body["status"] == "completed"
    assert body["glbUrl"] == "https://cdn.example/m.glb"
    assert "prompt" not in body


def test_model_status_needs_task_id(client, relay):
    relay.state.model_client.check_status.side_effect = EmptyOrInvalidInput("Task ID is required")
    resp = client.post("/functions/v1/model-status", json={})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Task ID is required"


class TestRelayKey:
    @pytest.fixture
    def locked(self, settings, mocker):
        settings = settings.model_copy(update={"relay_api_key": "relay-secret"})
        app = create_app(settings)
        app.state.story_writer = mocker.MagicMock()
        app.state.story_writer.write_story = mocker.AsyncMock(return_value=STORY)
        return TestClient(app)

    def test_rejects_without_key(self, locked):
        resp = locked.post("/functions/v1/generate-story", json={"mythology": "Greek"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    def test_accepts_bearer_and_apikey(self, locked):
        ok = locked.post("/functions/v1/generate-story", json={"mythology": "Greek"},
                         headers={"Authorization": "Bearer relay-secret"})
        assert ok.status_code == 200
        ok = locked.post("/functions/v1/generate-story", json={"mythology": "Greek"},
                         headers={"apikey": "relay-secret"})
        assert ok.status_code == 200

    def test_health_and_preflight_stay_open(self, locked):
        assert locked.get("/health").status_code == 200
        resp = locked.options("/functions/v1/generate-story", headers={
            "Origin": "https://myth.example",
            "Access-Control-Request-Method": "POST",
        })
        assert resp.status_code == 200
