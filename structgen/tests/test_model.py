import httpx
import pytest

from structgen import model
from structgen.errors import ErrorKind, InvalidCredential, ModelCallError, NotInitialized
from structgen.settings import Settings


def _status_error(status_code: int, body: dict) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://example.test/models/x:generateContent")
    response = httpx.Response(status_code, json=body, request=request)
    return httpx.HTTPStatusError("error", request=request, response=response)


def test_initialize_is_idempotent_for_the_same_key(test_settings: Settings) -> None:
    first = model.initialize_model("test_api_key", test_settings)
    second = model.initialize_model("test_api_key", test_settings)
    assert first is second
    assert model.get_model() is first


def test_first_key_wins(test_settings: Settings) -> None:
    first = model.initialize_model("key-one", test_settings)
    second = model.initialize_model("key-two", test_settings)
    assert second is first
    assert first.key_fingerprint == model.key_fingerprint("key-one")


def test_empty_key_is_rejected() -> None:
    with pytest.raises(InvalidCredential) as excinfo:
        model.initialize_model("")
    assert excinfo.value.kind is ErrorKind.MISSING_CREDENTIAL


def test_current_before_initialize_fails() -> None:
    with pytest.raises(NotInitialized):
        model.get_model()


def test_handle_uses_least_restrictive_safety_settings(test_settings: Settings) -> None:
    handle = model.initialize_model("test_api_key", test_settings)
    assert {setting["threshold"] for setting in handle.safety_settings} == {"BLOCK_NONE"}
    assert len(handle.safety_settings) == 4
    assert handle.model_name == test_settings.model_name


@pytest.mark.parametrize(
    ("status_code", "body", "kind"),
    [
        (499, {"error": {"status": "CANCELLED", "message": "cancelled"}}, ErrorKind.CANCELLED),
        (504, {"error": {"status": "DEADLINE_EXCEEDED", "message": "slow"}}, ErrorKind.TIMEOUT),
        (500, {"error": {"status": "INTERNAL", "message": "oops"}}, ErrorKind.MODEL_ERROR),
        (
            400,
            {"error": {"status": "INVALID_ARGUMENT", "details": [{"reason": "API_KEY_INVALID"}]}},
            ErrorKind.INVALID_CREDENTIAL,
        ),
    ],
)
def test_status_errors_map_to_kinds(status_code: int, body: dict, kind: ErrorKind) -> None:
    mapped = model._map_status_error(_status_error(status_code, body))
    assert isinstance(mapped, (ModelCallError, InvalidCredential))
    assert mapped.kind is kind


def test_empty_candidates_yield_no_response() -> None:
    assert model._first_candidate({"candidates": []}) is None
    response = model._first_candidate({"candidates": [{"content": {"parts": [{"text": "a"}, {"text": "b"}]}}]})
    assert response is not None and response.text == "ab"
