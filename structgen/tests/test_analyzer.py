import asyncio
import json

import pytest

from structgen import analyzer
from structgen.errors import AnalysisParseError
from structgen.schemas import ProcessingMode
from structgen.tests.fakes import ANALYSIS_JSON, REFINEMENT_JSON, make_handle


def test_initial_analysis_resolves_mode_and_schema() -> None:
    handle = make_handle(["```json\n" + ANALYSIS_JSON + "\n```"])
    analysis = asyncio.run(analyzer.analyze_initial(handle, "猫について教えて"))
    assert analysis.mode is ProcessingMode.GENERAL
    assert analysis.context.keywords == ["cat"]
    assert analysis.structuredOutputSchema.required == ("summary", "keyPoints")
    assert "猫について教えて" in handle.model.prompts[0]  # type: ignore[attr-defined]


def test_initial_analysis_repairs_missing_separator() -> None:
    raw = '{"context": {"type": "q", "keywords": [], "complexity": 1} "mode": "data"}'
    analysis = asyncio.run(analyzer.analyze_initial(make_handle([raw]), "sales numbers"))
    assert analysis.mode is ProcessingMode.DATA


@pytest.mark.parametrize(
    "raw",
    [
        "I think this is a general question.",
        json.dumps({"mode": "poetry", "context": {}}),
        json.dumps({"context": {"type": "q"}}),
        json.dumps({"mode": "general", "context": {"complexity": "very"}}),
    ],
)
def test_initial_analysis_rejects_unusable_output(raw: str) -> None:
    with pytest.raises(AnalysisParseError):
        asyncio.run(analyzer.analyze_initial(make_handle([raw]), "text"))


def test_missing_analysis_response_is_a_parse_error() -> None:
    with pytest.raises(AnalysisParseError):
        asyncio.run(analyzer.analyze_initial(make_handle([None]), "text"))


def test_detailed_analysis_merges_over_initial_context() -> None:
    refinement = json.dumps(
        {
            "context": {
                "keywords": ["cat", "pet"],
                "inputType": "question",
                "technicalLevel": "basic",
                "expectedOutput": "text",
                "constraints": ["be brief"],
                "steps": ["a"],
            }
        }
    )
    handle = make_handle([ANALYSIS_JSON, refinement])

    async def _run():
        initial = await analyzer.analyze_initial(handle, "猫について教えて")
        return initial, await analyzer.analyze_detailed(handle, initial)

    initial, merged = asyncio.run(_run())
    assert merged.keywords == ["cat", "pet"]
    assert merged.type == "question"
    assert merged.complexity == 2
    assert merged.constraints == ["be brief"]
    assert merged.model_extra == {"steps": ["a"]}
    assert initial.context.keywords == ["cat"]
    refinement_prompt = handle.model.prompts[1]  # type: ignore[attr-defined]
    for dimension in ("intent", "dependencies", "steps", "edgeCases", "outputFormat"):
        assert dimension in refinement_prompt


def test_detailed_analysis_accepts_bare_context_object() -> None:
    bare = {
        "mode": "code",
        "inputType": "command",
        "technicalLevel": "Advanced",
        "expectedOutput": "code",
        "constraints": "use Python",
    }
    handle = make_handle([ANALYSIS_JSON, json.dumps(bare)])

    async def _run():
        initial = await analyzer.analyze_initial(handle, "text")
        return await analyzer.analyze_detailed(handle, initial)

    merged = asyncio.run(_run())
    assert merged.technicalLevel == "advanced"
    assert merged.constraints == ["use Python"]
    assert "mode" not in merged.as_prompt_dict()


@pytest.mark.parametrize(
    ("refinement", "missing"),
    [
        ({"context": {"intent": "x"}}, "inputType, technicalLevel, expectedOutput, constraints"),
        (
            {"context": {"inputType": "question", "technicalLevel": "basic", "expectedOutput": "text"}},
            "constraints",
        ),
        (
            {
                "context": {
                    "inputType": "question",
                    "technicalLevel": "basic",
                    "expectedOutput": "text",
                    "constraints": [],
                }
            },
            "constraints",
        ),
        (
            {
                "context": {
                    "inputType": "question",
                    "technicalLevel": "expert",
                    "expectedOutput": "text",
                    "constraints": ["be brief"],
                }
            },
            "technicalLevel",
        ),
    ],
)
def test_incomplete_refinement_is_rejected(refinement: dict, missing: str) -> None:
    handle = make_handle([ANALYSIS_JSON, json.dumps(refinement)])

    async def _run():
        initial = await analyzer.analyze_initial(handle, "text")
        return await analyzer.analyze_detailed(handle, initial)

    with pytest.raises(AnalysisParseError) as excinfo:
        asyncio.run(_run())
    assert excinfo.value.details == f"missing or empty: {missing}"


def test_analyze_runs_initial_then_detailed() -> None:
    handle = make_handle([ANALYSIS_JSON, REFINEMENT_JSON])
    analysis = asyncio.run(analyzer.analyze(handle, "猫について教えて"))
    assert analysis.mode is ProcessingMode.GENERAL
    assert analysis.context.inputType == "question"
    assert analysis.context.keywords == ["cat"]
    assert analysis.context.model_extra == {"intent": "learn about cats"}
    assert len(handle.model.prompts) == 2  # type: ignore[attr-defined]
