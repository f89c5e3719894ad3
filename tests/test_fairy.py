from typing import Any

from google.genai import errors as genai_errors

import tablestar.fairy as fairy
from tablestar.fairy import BUSY_REPLY, DISTRACTED_REPLY, FAIRY_ROLE, GREETING, USER_ROLE, FairyAssistant
from tablestar.models import ChatMessage


class FakeResponse:
    def __init__(self, text: str) -> None:
        self.text = text


class BlockedResponse:
    text = None


class FakeClient:
    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []

    def generate_content(self, contents: str) -> Any:
        self.prompts.append(contents)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def test_transcript_starts_with_greeting() -> None:
    assistant = FairyAssistant("key", client=FakeClient())
    assert assistant.transcript == (ChatMessage(role=FAIRY_ROLE, text=GREETING),)


def test_ask_appends_question_and_reply() -> None:
    client = FakeClient(FakeResponse("  Three bags of 4 apples make 12 apples!  "))
    assistant = FairyAssistant("key", client=client)

    reply = assistant.ask("  why is 3 x 4 = 12?  ")

    assert reply == ChatMessage(role=FAIRY_ROLE, text="Three bags of 4 apples make 12 apples!")
    assert client.prompts == ["why is 3 x 4 = 12?"]
    assert assistant.transcript[1:] == (
        ChatMessage(role=USER_ROLE, text="why is 3 x 4 = 12?"),
        reply,
    )
    assert assistant.loading is False


def test_blank_question_is_ignored() -> None:
    client = FakeClient()
    assistant = FairyAssistant("key", client=client)
    assert assistant.ask("   ") is None
    assert client.prompts == []
    assert len(assistant.transcript) == 1


def test_question_while_loading_is_ignored() -> None:
    client = FakeClient()
    assistant = FairyAssistant("key", client=client)
    assistant._in_flight.acquire()  # noqa: SLF001
    try:
        assert assistant.loading is True
        assert assistant.ask("hello") is None
    finally:
        assistant._in_flight.release()  # noqa: SLF001
    assert client.prompts == []


def test_empty_reply_uses_distracted_message() -> None:
    assistant = FairyAssistant("key", client=FakeClient(FakeResponse(""), BlockedResponse()))
    assert assistant.ask("hi").text == DISTRACTED_REPLY
    assert assistant.ask("hi again").text == DISTRACTED_REPLY


def test_api_and_network_errors_use_busy_message(caplog: Any) -> None:
    overloaded = genai_errors.ServerError(503, {"error": {"message": "overloaded", "status": "UNAVAILABLE"}})
    client = FakeClient(overloaded, ConnectionError("offline"))
    assistant = FairyAssistant("key", client=client)

    assert assistant.ask("one").text == BUSY_REPLY
    assert assistant.ask("two").text == BUSY_REPLY
    assert [m.role for m in assistant.transcript] == [FAIRY_ROLE, USER_ROLE, FAIRY_ROLE, USER_ROLE, FAIRY_ROLE]
    assert "Math fairy request failed" in caplog.text
    assert assistant.loading is False


def test_unexpected_client_errors_use_busy_message(caplog: Any) -> None:
    assistant = FairyAssistant("key", client=FakeClient(RuntimeError("blocked prompt")))

    reply = assistant.ask("hi")

    assert reply == ChatMessage(role=FAIRY_ROLE, text=BUSY_REPLY)
    assert "Unexpected error from math fairy" in caplog.text
    assert assistant.loading is False


class FakeModels:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    def generate_content(self, **kwargs: Any) -> FakeResponse:
        self.calls.append(kwargs)
        return FakeResponse("Four groups of 2 stars!")


class FakeGenaiClient:
    instances: list["FakeGenaiClient"] = []

    def __init__(self, api_key: str) -> None:
        self.api_key = api_key
        self.models = FakeModels()
        FakeGenaiClient.instances.append(self)


def test_default_client_calls_gemini_with_persona(monkeypatch: Any) -> None:
    FakeGenaiClient.instances.clear()
    monkeypatch.setattr(fairy.genai, "Client", FakeGenaiClient)

    assistant = FairyAssistant("secret", model_name="gemini-test")
    reply = assistant.ask("why is 4 x 2 = 8?")

    [client] = FakeGenaiClient.instances
    [call] = client.models.calls
    assert client.api_key == "secret"
    assert call["model"] == "gemini-test"
    assert call["contents"] == "why is 4 x 2 = 8?"
    assert "children" in call["config"].system_instruction
    assert reply.text == "Four groups of 2 stars!"
    assert assistant.model_name == "gemini-test"
