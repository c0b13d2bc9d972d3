import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from app.core.errors import ServerMisconfigured, UpstreamUnavailable, ValidationError
from app.services.extractor import (
    Classification,
    ExtractorAgent,
    clean_extraction,
    pick_page,
    with_retries,
)


def completion(content):
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=content))]
    return response


def make_agent(*contents):
    client = MagicMock()
    client.chat.completions.create.side_effect = [
        c if isinstance(c, Exception) else completion(c) for c in contents
    ]
    sleeps = []
    http = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    agent = ExtractorAgent(client=client, http_client=http, sleep=sleeps.append)
    return agent, client, sleeps


def test_classify_parses_and_clamps():
    agent, client, _ = make_agent('{"type": "PAN", "confidence": 1.7}')
    result = agent.classify("data:image/png;base64,AAAA")
    assert (result.type, result.confidence) == ("pan", 1.0)

    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["messages"][1]["content"][1]["image_url"]["url"] == "data:image/png;base64,AAAA"


def test_classify_maps_unknown_labels():
    agent, _, _ = make_agent('```json\n{"type": "driving_licence", "confidence": "high"}\n```')
    result = agent.classify("data:image/png;base64,AAAA")
    assert (result.type, result.confidence) == ("unknown", 0.0)


def test_classify_requires_an_image():
    agent, _, _ = make_agent()
    with pytest.raises(ValidationError):
        agent.classify("")


def test_model_calls_are_retried_with_backoff():
    agent, client, sleeps = make_agent(RuntimeError("rate limited"), RuntimeError("timeout"), '{"type": "aadhar", "confidence": 0.9}')
    assert agent.classify("data:image/png;base64,AAAA").type == "aadhar"
    assert client.chat.completions.create.call_count == 3
    assert sleeps == [0.6, 1.2]


def test_retries_give_up():
    sleeps = []
    fn = MagicMock(side_effect=RuntimeError("down"))
    with pytest.raises(UpstreamUnavailable):
        with_retries(fn, attempts=3, base_delay=0.1, sleep=sleeps.append)
    assert fn.call_count == 3
    assert sleeps == [0.1, 0.2]


def test_extract_strips_manual_only_fields():
    content = json.dumps({
        "fatherName": "Ravi Rao",
        "address": "12 MG Road",
        "ref": "R-77",
        "ff6E": "6E123",
        "ffEK": "EK456",
        "ffQR": "QR1",
        "mobileNumber": 9876543210,
        "unexpected": "value",
    })
    agent, _, _ = make_agent(content)
    data = agent.extract("passport_back", "https://files.example/back.jpg")

    assert data == {
        "fatherName": "Ravi Rao",
        "address": "12 MG Road",
        "imageUrl": "https://files.example/back.jpg",
    }


def test_extract_normalises_passport_names():
    content = json.dumps({"passportNumber": "A1234567", "givenNames": "ASHA KIRAN", "surname": "RAO", "firstName": "ASHA"})
    agent, _, _ = make_agent(content)
    data = agent.extract("passport_front", "https://files.example/front.jpg")

    assert data["firstName"] == "ASHA KIRAN"
    assert data["lastName"] == "RAO"
    assert "givenNames" not in data and "surname" not in data


def test_extract_rejects_unknown_type():
    agent, _, _ = make_agent()
    with pytest.raises(ValidationError):
        agent.extract("driving_licence", "data:image/png;base64,AAAA")


def test_extract_with_unparseable_output_returns_no_fields():
    agent, _, _ = make_agent("sorry", "still not json", "nope")
    assert agent.extract("pan", "data:image/png;base64,AAAA") == {"imageUrl": "data:image/png;base64,AAAA"}


def test_clean_extraction_keeps_only_strings():
    data = clean_extraction("aadhar", {"aadhaarNumber": " 1234 5678 9012 ", "gender": None, "name": ["x"]})
    assert data == {"aadhaarNumber": "1234 5678 9012"}


def test_missing_api_key_is_a_configuration_error():
    agent = ExtractorAgent()
    with patch("app.services.llm_client.settings") as settings:
        settings.OPENAI_API_KEY = None
        with pytest.raises(ServerMisconfigured):
            agent.classify("data:image/png;base64,AAAA")


def test_ensure_url_ready_retries_head_requests():
    calls = []

    def handler(request):
        calls.append(request.method)
        return httpx.Response(404 if len(calls) < 2 else 200)

    sleeps = []
    agent = ExtractorAgent(client=MagicMock(), http_client=httpx.Client(transport=httpx.MockTransport(handler)), sleep=sleeps.append)
    assert agent.ensure_url_ready("https://files.example/new.jpg") is True
    assert calls == ["HEAD", "HEAD"]
    assert sleeps == [0.4]
    assert agent.ensure_url_ready("data:image/png;base64,AAAA") is True


def test_classify_pages_drops_failed_pages():
    agent, _, _ = make_agent()
    pages = {1: "data:image/png;base64,P1", 2: "data:image/png;base64,P2"}

    def classify(url):
        if url.endswith("P2"):
            raise UpstreamUnavailable("Vision model call failed")
        return Classification(type="passport_front", confidence=0.8)

    with patch.object(agent, "pdf_page_images", return_value=pages), patch.object(agent, "classify", side_effect=classify):
        results = agent.classify_pages("doc.pdf")

    assert [(r.page, r.type) for r in results] == [(1, "passport_front")]


def test_classify_pages_fails_when_no_page_succeeds():
    agent, _, _ = make_agent()
    with patch.object(agent, "pdf_page_images", return_value={1: "x"}), \
         patch.object(agent, "classify", side_effect=UpstreamUnavailable("down")):
        with pytest.raises(UpstreamUnavailable):
            agent.classify_pages("doc.pdf")


def page(n, doc_type, confidence):
    return Classification(type=doc_type, confidence=confidence, page=n)


def test_pick_page_exact_match_highest_confidence():
    results = [page(1, "pan", 0.6), page(2, "pan", 0.9), page(3, "aadhar", 0.99)]
    assert pick_page(results, "pan").page == 2


def test_pick_page_passport_both_labelled_other_side():
    results = [page(1, "passport_back", 0.55), page(2, "passport_back", 0.95)]
    assert pick_page(results, "passport_front").page == 1


def test_pick_page_passport_page_convention():
    results = [page(1, "unknown", 0.3), page(2, "unknown", 0.4)]
    assert pick_page(results, "passport_front").page == 1
    assert pick_page(results, "passport_back").page == 2


def test_pick_page_falls_back_to_highest_confidence():
    results = [page(1, "aadhar", 0.5), page(2, "unknown", 0.7)]
    assert pick_page(results, "pan").page == 2
    assert pick_page([], "pan") is None
