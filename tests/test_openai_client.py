from types import SimpleNamespace

from modules.common import openai_client
from modules.common.utils import read_jsonl


class FakeSDK:
    def __init__(self, *args, **kwargs):
        self.kwargs = kwargs
        self.responses = self

    def create(self, **kwargs):
        return SimpleNamespace(id="resp_1", model=kwargs["model"],
                               usage=SimpleNamespace(input_tokens=1200, output_tokens=40), output=[])


def test_wrapper_logs_usage_to_sink(tmp_path, monkeypatch):
    sink = tmp_path / "usage.jsonl"
    monkeypatch.setenv("INSTRUMENT_SINK", str(sink))
    monkeypatch.setattr(openai_client, "_OpenAI", FakeSDK)

    client = openai_client.OpenAI(api_key="k")
    response = client.responses.create(model="gpt-4.1", input=[],
                                       tools=[{"type": "image_generation", "size": "1024x1536"}])

    assert response.id == "resp_1"
    (event,) = list(read_jsonl(str(sink)))
    assert event["model"] == "gpt-4.1"
    assert (event["prompt_tokens"], event["completion_tokens"]) == (1200, 40)
    assert event["request_id"] == "resp_1"
    assert event["image_size"] == "1024x1536"
    assert event["request_ms"] >= 0


def test_wrapper_is_silent_without_sink(tmp_path, monkeypatch):
    monkeypatch.delenv("INSTRUMENT_SINK", raising=False)
    monkeypatch.setattr(openai_client, "_OpenAI", FakeSDK)
    client = openai_client.OpenAI()
    client.responses.create(model="gpt-4.1", input=[])
    assert list(tmp_path.iterdir()) == []


def test_extract_usage_accepts_dicts_and_missing_usage():
    assert openai_client._extract_usage(SimpleNamespace(usage=None)) == (0, 0)
    assert openai_client._extract_usage(SimpleNamespace(usage={"prompt_tokens": 3, "completion_tokens": 4})) == (3, 4)


def test_sdk_retries_disabled_by_default(monkeypatch):
    monkeypatch.setattr(openai_client, "_OpenAI", FakeSDK)
    assert openai_client.OpenAI(api_key="k")._client.kwargs["max_retries"] == 0
    assert openai_client.OpenAI(api_key="k", max_retries=4)._client.kwargs["max_retries"] == 4


def test_real_sdk_client_has_no_hidden_retries():
    client = openai_client.OpenAI(api_key="test-key")
    assert client._client.max_retries == 0
