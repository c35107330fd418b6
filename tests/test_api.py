from snapedit.agents.photo.state import AgentMode
from snapedit.tips.generator import TipGenerator
from tests.conftest import (
    ORIGINAL,
    FakeSynthesizer,
    ScriptedChatModel,
    image_url,
    parse_sse,
    text_turn,
    tip_json,
    tool_turn,
)


def stream_events(client, path, payload):
    with client.stream("POST", path, json=payload) as response:
        assert response.status_code == 200
        assert response.headers["Cache-Control"] == "no-cache"
        return parse_sse(response.iter_lines())


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_agent_streams_events(client, services):
    services.agent_llm = ScriptedChatModel(
        [
            tool_turn(("generate_image", {"editPrompt": "golden hour"})),
            text_turn("Done!"),
        ]
    )
    services.synthesizer = FakeSynthesizer([image_url("golden")])

    events = stream_events(client, "/agent", {"prompt": "warmer", "image": ORIGINAL})

    assert [e for e, _ in events] == [
        "status",
        "tool_call",
        "image",
        "new_turn",
        "content",
        "done",
    ]
    assert events[1][1] == {
        "type": "tool_call",
        "tool": "generate_image",
        "input": {"editPrompt": "golden hour"},
        "images": [ORIGINAL],
    }
    assert events[2][1] == {"type": "image", "image": image_url("golden")}


def test_agent_analysis_mode(client, services):
    services.agent_llm = ScriptedChatModel([text_turn("A quiet harbor at dusk.")])

    events = stream_events(
        client,
        "/agent",
        {"image": ORIGINAL, "mode": AgentMode.ANALYSIS.value, "analysisContext": "initial"},
    )

    assert events == [
        ("content", {"type": "content", "text": "A quiet harbor at dusk."}),
        ("done", {"type": "done"}),
    ]


def test_agent_requires_image(client):
    assert client.post("/agent", json={"prompt": "hi"}).status_code == 400


def test_agent_rejects_unknown_mode(client):
    response = client.post("/agent", json={"image": ORIGINAL, "mode": "karaoke"})
    assert response.status_code == 422


def test_tips_stream_tip_records_then_done(client, services):
    text = tip_json("Warm light", "enhance") + "\n" + tip_json("Film grain", "enhance")
    services.tip_generator = TipGenerator(
        ScriptedChatModel([text_turn(text[:30], text[30:90], text[90:])])
    )

    events = stream_events(client, "/tips", {"image": ORIGINAL, "category": "enhance"})

    assert [e for e, _ in events] == ["tip", "tip", "done"]
    assert events[0][1]["label"] == "Warm light"
    assert events[0][1]["category"] == "enhance"
    assert events[0][1]["previewStatus"] == "none"
    assert events[-1][1] == {"type": "done"}


def test_tips_prompt_includes_metadata_and_image(client, services):
    llm = ScriptedChatModel([text_turn(tip_json("Snow", "wild"))])
    services.tip_generator = TipGenerator(llm)

    stream_events(
        client,
        "/tips",
        {
            "image": ORIGINAL,
            "category": "wild",
            "metadata": {"takenAt": "2024-12-24", "location": "Oslo"},
        },
    )

    human = llm.calls[0][1]
    prompt = human.content[0]["text"]
    assert "Location: Oslo" in prompt
    assert '"category": "wild"' in prompt
    assert human.content[1]["image_url"]["url"] == ORIGINAL


def test_tips_model_failure_emits_error_record(client, services):
    services.tip_generator = TipGenerator(
        ScriptedChatModel([[*text_turn(tip_json("Warm", "enhance")), RuntimeError("quota")]])
    )

    events = stream_events(client, "/tips", {"image": ORIGINAL, "category": "enhance"})

    assert [e for e, _ in events] == ["tip", "error"]
    assert events[-1][1] == {"type": "error", "message": "quota"}


def test_tips_validation(client):
    assert client.post("/tips", json={"category": "enhance"}).status_code == 400
    assert client.post("/tips", json={"image": ORIGINAL, "category": "odd"}).status_code == 422


def test_preview_returns_image(client, services):
    services.synthesizer = FakeSynthesizer([image_url("preview")])

    response = client.post(
        "/preview", json={"image": ORIGINAL, "editPrompt": "add snow", "aspectRatio": "4:5"}
    )

    assert response.status_code == 200
    assert response.json() == {"image": image_url("preview")}
    assert services.synthesizer.calls == [([ORIGINAL], "add snow", "4:5")]


def test_preview_failures_map_to_502(client, services):
    services.synthesizer = FakeSynthesizer([None, RuntimeError("boom")])

    for _ in range(2):
        response = client.post("/preview", json={"image": ORIGINAL, "editPrompt": "x"})
        assert response.status_code == 502
        assert response.json()["detail"] == "Failed to generate preview"


def test_preview_requires_fields(client):
    assert client.post("/preview", json={"image": ORIGINAL}).status_code == 400
    assert client.post("/preview", json={"editPrompt": "x"}).status_code == 400
