from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from snapedit.api.models import ChatRequest
from tests.conftest import (
    ORIGINAL,
    FakeSynthesizer,
    ScriptedChatModel,
    image_url,
    parse_sse,
    text_turn,
)


def post_chat(client, payload):
    with client.stream("POST", "/chat", json=payload) as response:
        assert response.status_code == 200
        return response, parse_sse(response.iter_lines())


def test_chat_streams_and_terminates(client, services):
    services.chat_llm = ScriptedChatModel([text_turn("Hel", "lo ", "there")])

    response, events = post_chat(client, {"sessionId": "s1", "message": "hello"})

    assert "text/event-stream" in response.headers["content-type"]
    assert response.headers["Cache-Control"] == "no-cache"
    assert response.headers["X-Accel-Buffering"] == "no"
    assert [e for e, _ in events] == ["content", "content", "content", "done"]
    assert "".join(d["text"] for e, d in events if e == "content") == "Hello there"
    assert events[-1] == ("done", {"type": "done"})


def test_chat_keeps_text_history_per_session(client, services):
    llm = ScriptedChatModel([text_turn("First."), text_turn("Second.")])
    services.chat_llm = llm

    post_chat(client, {"sessionId": "s1", "message": "one", "image": ORIGINAL})
    post_chat(client, {"sessionId": "s1", "message": "two"})

    second = llm.calls[1]
    assert isinstance(second[0], SystemMessage)
    assert isinstance(second[1], HumanMessage) and second[1].content == "one"
    assert isinstance(second[2], AIMessage) and second[2].content == "First."
    assert second[3].content == "two"

    history = services.sessions.get_or_create("s1").messages
    assert [m.content for m in history] == ["one", "First.", "two", "Second."]


def test_chat_reset_starts_over(client, services):
    llm = ScriptedChatModel([text_turn("a"), text_turn("b")])
    services.chat_llm = llm

    post_chat(client, {"sessionId": "s1", "message": "one"})
    post_chat(client, {"sessionId": "s1", "message": "two", "reset": True})

    assert len(llm.calls[1]) == 2


def test_chat_image_request_emits_image(client, services):
    services.chat_llm = ScriptedChatModel([text_turn("Adding snow.")])
    services.synthesizer = FakeSynthesizer([image_url("snowy")])

    _, events = post_chat(
        client,
        {"sessionId": "s1", "message": "add snow", "image": ORIGINAL, "wantImage": True},
    )

    assert [e for e, _ in events] == ["content", "image", "done"]
    assert events[1][1] == {"type": "image", "image": image_url("snowy")}
    assert services.synthesizer.calls == [([ORIGINAL], "add snow", None)]


def test_chat_failure_emits_error_and_keeps_history(client, services):
    services.chat_llm = ScriptedChatModel([RuntimeError("upstream down")])

    _, events = post_chat(client, {"sessionId": "s1", "message": "hello"})

    assert events == [("error", {"type": "error", "message": "Failed to process chat request"})]
    assert services.sessions.get_or_create("s1").messages == []


def test_chat_requires_session_and_message(client):
    assert client.post("/chat", json={"message": "hi"}).status_code == 400
    assert client.post("/chat", json={"sessionId": "s1"}).status_code == 400


def test_chat_request_accepts_aliases():
    r = ChatRequest(sessionId="s", message="m", wantImage=True, aspectRatio="1:1")
    assert r.session_id == "s"
    assert r.want_image is True
    assert r.aspect_ratio == "1:1"
