"""Tests for the LiteLLM-backed planning helpers."""

from __future__ import annotations

import asyncio
import json

import pytest

from picstory.common import ChatResult, acall_chat_completion, llm
from picstory.planning import (
    LiteLLMPlanner,
    LiteLLMPromptEnhancer,
    LiteLLMReferenceSummarizer,
    build_planning_prompt,
    parse_plan,
)
from picstory.sessions import GenerationFailure, ImageData, PlanShapeMismatch, ValidationError


class RecordingCompletion:
    def __init__(self, text: str = "", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.calls: list[dict] = []

    async def __call__(self, **kwargs) -> ChatResult:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return ChatResult(text=self.text, raw=None)


def _plan_json(count: int, **extra) -> str:
    payload = {
        "coverPagePrompt": "A vibrant cover with the title",
        "items": [{"index": 10 + n, "prompt": f"Scene {n}", "caption": None if n % 2 else f"Cap {n}"} for n in range(count)],
    }
    payload.update(extra)
    return json.dumps(payload)


def test_planner_parses_and_reindexes_items() -> None:
    completion = RecordingCompletion(_plan_json(3))
    planner = LiteLLMPlanner(kind="storybook", model="test-model", api_key="k", completion_fn=completion)

    plan = asyncio.run(planner.plan("Forest Trip", "foxes", 3, {"age_range": "3-5"}))

    assert plan.cover_prompt == "A vibrant cover with the title"
    assert [item.index for item in plan.items] == [1, 2, 3]
    assert [item.caption for item in plan.items] == ["Cap 0", None, "Cap 2"]
    call = completion.calls[0]
    assert call["model"] == "test-model"
    assert call["response_format"] == {"type": "json_object"}
    assert "Target age range: 3-5." in call["messages"][0]["content"]


def test_planner_rejects_wrong_item_count() -> None:
    planner = LiteLLMPlanner(completion_fn=RecordingCompletion(_plan_json(2)), model="m")

    with pytest.raises(PlanShapeMismatch):
        asyncio.run(planner.plan("t", "p", 3, {}))


def test_parse_plan_handles_fences_and_missing_cover() -> None:
    fenced = "```json\n" + _plan_json(1) + "\n```"

    assert len(parse_plan(fenced, 1).items) == 1
    with pytest.raises(PlanShapeMismatch):
        parse_plan(_plan_json(1, coverPagePrompt=""), 1)
    with pytest.raises(PlanShapeMismatch):
        parse_plan("not json", 1)


def test_planning_prompt_varies_by_kind() -> None:
    coloring = build_planning_prompt(kind="coloring_book", title="Forest Trip", theme="foxes", page_count=4)
    poems = build_planning_prompt(
        kind="poem_collection",
        title="Rhymes",
        theme="rain",
        page_count=2,
        options={"allowCaptions": False, "referenceDescription": "- a red umbrella"},
    )

    assert 'exact title text: "Forest Trip"' in coloring.system
    assert "BLACK-and-WHITE" in coloring.system
    assert "exactly 4 items" in coloring.system
    assert "POEM COLLECTION" in poems.system
    assert '"caption": null for each interior item' in poems.system
    assert "- a red umbrella" in poems.system
    assert poems.user.endswith("Pages (interior): 2")


def test_reference_summarizer_sends_data_urls() -> None:
    completion = RecordingCompletion("- a fox")
    summarizer = LiteLLMReferenceSummarizer(model="vision", completion_fn=completion)
    images = [ImageData(data=b"abc", media_type="image/png")] * 3

    result = asyncio.run(summarizer.describe(images))

    assert result == "- a fox"
    content = completion.calls[0]["messages"][1]["content"]
    urls = [part["image_url"]["url"] for part in content if part["type"] == "image_url"]
    assert urls == ["data:image/png;base64,YWJj"] * 2


def test_reference_summarizer_swallows_backend_errors() -> None:
    summarizer = LiteLLMReferenceSummarizer(completion_fn=RecordingCompletion(error=RuntimeError("down")))

    assert asyncio.run(summarizer.describe([ImageData(data=b"x")])) == ""
    assert asyncio.run(summarizer.describe([])) == ""


def test_enhancer_targets_and_errors() -> None:
    completion = RecordingCompletion("  A clearer prompt.  ")
    enhancer = LiteLLMPromptEnhancer(model="m", completion_fn=completion)

    result = asyncio.run(enhancer.enhance("fox", kind="coloring_book", target="interior"))

    assert result == "A clearer prompt."
    assert "BLACK-AND-WHITE line-art" in completion.calls[0]["messages"][0]["content"]
    with pytest.raises(ValidationError):
        asyncio.run(enhancer.enhance("fox", kind="storybook", target="back-cover"))
    with pytest.raises(ValidationError):
        asyncio.run(enhancer.enhance("  ", kind="storybook", target="theme"))

    failing = LiteLLMPromptEnhancer(model="m", completion_fn=RecordingCompletion(error=RuntimeError("x")))
    with pytest.raises(GenerationFailure):
        asyncio.run(failing.enhance("fox", kind="storybook", target="theme"))


def test_acall_chat_completion_builds_payload_and_strips_text(monkeypatch) -> None:
    seen: dict = {}

    async def fake_acompletion(**payload):
        seen.update(payload)
        return {"choices": [{"message": {"content": "  hello  "}}]}

    monkeypatch.setattr(llm, "acompletion", fake_acompletion)

    result = asyncio.run(
        acall_chat_completion(model="m", messages=[{"role": "user", "content": "hi"}], temperature=0.1, seed=7)
    )

    assert result.text == "hello"
    assert seen == {"model": "m", "messages": [{"role": "user", "content": "hi"}], "temperature": 0.1, "seed": 7}
    assert not hasattr(llm, "call_chat_completion")
