from types import SimpleNamespace

import pytest
from openai import OpenAIError

from relaybot.assistant import OpenAIAssistantClient
from relaybot.assistant.openai_client import extract_text
from relaybot.errors import AssistantBackendError


def _text_message(role: str, *values: str):
    blocks = [SimpleNamespace(type="text", text=SimpleNamespace(value=v)) for v in values]
    return SimpleNamespace(id="msg_1", role=role, content=blocks)


class FakeMessages:
    def __init__(self, listing):
        self.listing = listing
        self.created = []

    def create(self, thread_id, *, role, content):
        self.created.append((thread_id, role, content))
        return SimpleNamespace(id=f"msg_{len(self.created)}")

    def list(self, *, thread_id, order, limit):
        assert order == "desc" and limit == 1
        return SimpleNamespace(data=self.listing)


class FakeRuns:
    def __init__(self, status="completed", error=None):
        self.status = status
        self.error = error
        self.calls = []

    def create_and_poll(self, *, thread_id, assistant_id, poll_interval_ms):
        self.calls.append((thread_id, assistant_id, poll_interval_ms))
        if self.error is not None:
            raise self.error
        return SimpleNamespace(status=self.status, last_error=None)


class FakeThreads:
    def __init__(self, messages, runs):
        self.messages = messages
        self.runs = runs

    def create(self):
        return SimpleNamespace(id="thread_new")


def make_sdk(*, listing=None, status="completed", run_error=None, models_error=None):
    messages = FakeMessages(listing if listing is not None else [])
    runs = FakeRuns(status, run_error)

    def _list_models():
        if models_error is not None:
            raise models_error
        return []

    return SimpleNamespace(
        beta=SimpleNamespace(
            threads=FakeThreads(messages, runs),
            assistants=SimpleNamespace(retrieve=lambda aid: SimpleNamespace(id=aid)),
        ),
        models=SimpleNamespace(list=_list_models),
    )


def make_client(sdk) -> OpenAIAssistantClient:
    return OpenAIAssistantClient(
        api_key="sk-test", assistant_id="asst_1", poll_interval_ms=250, client=sdk
    )


def test_extract_text_joins_text_blocks_only():
    message = _text_message("assistant", "Hello", " there")
    message.content.append(SimpleNamespace(type="image_file"))
    assert extract_text(message) == "Hello there"


@pytest.mark.asyncio
async def test_thread_message_and_reply_cycle():
    sdk = make_sdk(listing=[_text_message("assistant", "Hi!")])
    client = make_client(sdk)

    thread_id = await client.create_thread()
    await client.add_message(thread_id, "hello")
    reply = await client.run_and_await_reply(thread_id)

    assert thread_id == "thread_new"
    assert sdk.beta.threads.messages.created == [("thread_new", "user", "hello")]
    assert sdk.beta.threads.runs.calls == [("thread_new", "asst_1", 250)]
    assert reply == "Hi!"


@pytest.mark.asyncio
async def test_failed_run_raises_backend_error():
    client = make_client(make_sdk(status="failed"))
    with pytest.raises(AssistantBackendError):
        await client.run_and_await_reply("thread_1")


@pytest.mark.asyncio
async def test_sdk_errors_are_mapped():
    client = make_client(make_sdk(run_error=OpenAIError("boom")))
    with pytest.raises(AssistantBackendError) as exc_info:
        await client.run_and_await_reply("thread_1")
    assert "boom" in str(exc_info.value)


@pytest.mark.asyncio
async def test_no_assistant_reply_returns_none():
    client = make_client(make_sdk(listing=[_text_message("user", "echo")]))
    assert await client.run_and_await_reply("thread_1") is None

    empty = make_client(make_sdk(listing=[]))
    assert await empty.run_and_await_reply("thread_1") is None


@pytest.mark.asyncio
async def test_ping_and_key_validation():
    assert await make_client(make_sdk()).ping() is True
    assert await make_client(make_sdk()).validate_api_key() is True
    bad = make_client(make_sdk(models_error=OpenAIError("invalid key")))
    assert await bad.validate_api_key() is False
