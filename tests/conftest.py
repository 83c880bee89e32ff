import json
from types import SimpleNamespace

import pytest
import requests_mock

from models import UserContext


def square(lon, lat, size_deg):
    """Closed lon/lat square polygon."""
    return {
        "type": "Polygon",
        "coordinates": [[
            [lon, lat],
            [lon + size_deg, lat],
            [lon + size_deg, lat + size_deg],
            [lon, lat + size_deg],
            [lon, lat],
        ]],
    }


def text_chunk(content):
    delta = SimpleNamespace(content=content, tool_calls=None)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta)])


def tool_call_chunks(index, call_id, name, arguments):
    """A tool call split across two deltas, the way providers stream it."""
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    half = len(arguments) // 2
    first = SimpleNamespace(index=index, id=call_id, type="function",
                            function=SimpleNamespace(name=name, arguments=arguments[:half]))
    second = SimpleNamespace(index=index, id=None, type=None,
                             function=SimpleNamespace(name=None, arguments=arguments[half:]))
    return [
        SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=None, tool_calls=[first]))]),
        SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=None, tool_calls=[second]))]),
    ]


class FakeStream:
    def __init__(self, chunks):
        self._chunks = list(chunks)

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for chunk in self._chunks:
            yield chunk


class FakeEngine:
    """Stands in for LLMEngine. Each scripted reply is a dict with optional
    "content" and "tool_calls" [(call_id, name, arguments)]."""

    def __init__(self, replies=None, title="Heat island study", model="gpt-4o"):
        self.model = model
        self.replies = list(replies or [])
        self.title = title
        self.calls = []
        self.text_calls = []

    async def completion(self, messages, max_tokens, system_prompt=None, tools=None, tool_choice=None, stream=False):
        self.calls.append({
            "messages": [dict(m) for m in messages],
            "system_prompt": system_prompt,
            "tools": tools,
            "tool_choice": tool_choice,
            "stream": stream,
        })
        reply = self.replies.pop(0) if self.replies else {"content": "Done."}
        chunks = []
        if reply.get("content"):
            for word in reply["content"].split(" "):
                chunks.append(text_chunk(word if not chunks else " " + word))
        for i, (call_id, name, arguments) in enumerate(reply.get("tool_calls", [])):
            chunks.extend(tool_call_chunks(i, call_id, name, arguments))
        return FakeStream(chunks)

    async def complete_text(self, messages, max_tokens, system_prompt=None):
        self.text_calls.append({"messages": messages, "system_prompt": system_prompt})
        return self.title


class FakeOpenAIClient:
    """Records chat.completions.create parameters; returns a fixed message."""

    def __init__(self, content="# Report"):
        self.created = []
        self.content = content
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **params):
        self.created.append(params)
        message = SimpleNamespace(content=self.content, tool_calls=None)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.fixture
def requests_mocker():
    with requests_mock.Mocker() as m:
        yield m


@pytest.fixture
def free_user():
    return UserContext(
        user_id="u-1",
        role="user",
        subscription_tier="free",
        max_requests=10,
        max_area=100.0,
        usage_count=3,
    )


@pytest.fixture
def small_roi():
    # ~0.05 deg square near the equator, roughly 30 km²
    return square(36.80, -1.30, 0.05)


@pytest.fixture
def large_roi():
    # ~0.2 deg square near the equator, roughly 490 km²
    return square(36.70, -1.40, 0.2)
