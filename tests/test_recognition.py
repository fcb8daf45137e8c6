import json

import httpx
import pytest

from transhot.errors import RecognitionError
from transhot.models import AuthToken
from transhot.recognition import (
    RecognitionClient,
    extract_error_detail,
    extract_text_blocks,
)

ENDPOINT = "https://vision.example/v1/images:annotate"


def _word(text):
    return {"symbols": [{"text": ch} for ch in text]}


def _block(paragraphs, vertices=None, normalized=None):
    bounding = {}
    if vertices is not None:
        bounding["vertices"] = vertices
    if normalized is not None:
        bounding["normalizedVertices"] = normalized
    return {
        "boundingBox": bounding,
        "paragraphs": [{"words": [_word(w) for w in words]} for words in paragraphs],
    }


def _annotation(*blocks, width=200, height=100):
    return {"fullTextAnnotation": {"pages": [{"width": width, "height": height, "blocks": list(blocks)}]}}


SQUARE = [{"x": 10, "y": 5}, {"x": 60, "y": 5}, {"x": 60, "y": 25}, {"x": 10, "y": 25}]


def test_blocks_join_symbols_words_and_paragraphs():
    annotation = _annotation(_block([["Hello", "world"], ["Second"]], vertices=SQUARE))

    blocks = extract_text_blocks(annotation)

    assert len(blocks) == 1
    assert blocks[0].text == "Hello world\nSecond"
    box = blocks[0].bounding_box
    assert (box.x1, box.y1, box.x2, box.y2) == (10, 5, 60, 25)


def test_blocks_without_text_are_dropped():
    annotation = _annotation(
        _block([], vertices=SQUARE),
        _block([["Kept"]], vertices=SQUARE),
    )

    assert [block.text for block in extract_text_blocks(annotation)] == ["Kept"]


def test_normalized_vertices_are_scaled_to_pixels():
    normalized = [{"x": 0.1, "y": 0.2}, {"x": 0.5, "y": 0.2}, {"x": 0.5, "y": 0.6}, {"x": 0.1, "y": 0.6}]
    annotation = _annotation(_block([["Hi"]], normalized=normalized), width=200, height=100)

    box = extract_text_blocks(annotation)[0].bounding_box

    assert box.x1 == pytest.approx(20)
    assert box.y1 == pytest.approx(20)
    assert box.x2 == pytest.approx(100)
    assert box.y2 == pytest.approx(60)


def test_explicit_dimensions_override_page_dimensions():
    normalized = [{"x": 0.0, "y": 0.0}, {"x": 1.0, "y": 0.0}, {"x": 1.0, "y": 1.0}, {"x": 0.0, "y": 1.0}]
    annotation = _annotation(_block([["Hi"]], normalized=normalized), width=200, height=100)

    box = extract_text_blocks(annotation, width=50, height=40)[0].bounding_box

    assert (box.x2, box.y2) == (50, 40)


def test_missing_vertex_coordinates_default_to_zero():
    vertices = [{}, {"x": 10}, {"x": 10, "y": 5}, {"y": 5}]
    annotation = _annotation(_block([["Hi"]], vertices=vertices))

    box = extract_text_blocks(annotation)[0].bounding_box

    assert (box.x1, box.y1, box.x2, box.y2) == (0, 0, 10, 5)


def test_degenerate_rectangles_are_discarded():
    flat = [{"x": 1, "y": 5}, {"x": 30, "y": 5}, {"x": 30, "y": 5}, {"x": 1, "y": 5}]
    annotation = _annotation(_block([["Line"]], vertices=flat), _block([["Nowhere"]]))

    assert extract_text_blocks(annotation) == []


def test_empty_annotation_has_no_blocks():
    assert extract_text_blocks({}) == []


def test_error_detail_prefers_structured_message():
    assert extract_error_detail('{"error": {"code": 429, "message": "Quota exceeded"}}') == "Quota exceeded"
    assert extract_error_detail("plain failure") == "plain failure"

    detail = extract_error_detail("x" * 500)
    assert detail == "x" * 140 + "…"


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_recognize_sends_api_key_as_query_param():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"responses": [_annotation(_block([["Hi"]], vertices=SQUARE))]})

    http_client = _client(handler)
    recognizer = RecognitionClient(ENDPOINT, http_client=http_client)
    try:
        result = await recognizer.recognize("QUJD", "image/png", AuthToken(kind="apiKey", value="k-1"))
    finally:
        await http_client.aclose()

    request = seen[0]
    assert request.url.params["key"] == "k-1"
    assert "authorization" not in request.headers
    body = json.loads(request.content)
    assert body["requests"][0]["image"] == {"content": "QUJD"}
    assert body["requests"][0]["features"] == [{"type": "TEXT_DETECTION"}]
    assert [block.text for block in result.blocks] == ["Hi"]
    assert result.full_text == "Hi"


@pytest.mark.asyncio
async def test_recognize_sends_bearer_header():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"responses": [{}]})

    http_client = _client(handler)
    recognizer = RecognitionClient(ENDPOINT, http_client=http_client)
    try:
        result = await recognizer.recognize("QUJD", "image/png", AuthToken(kind="bearer", value="tok"))
    finally:
        await http_client.aclose()

    assert seen[0].headers["authorization"] == "Bearer tok"
    assert "key" not in seen[0].url.params
    assert result.blocks == []


@pytest.mark.asyncio
async def test_recognize_rate_limit_surfaces_status_and_message():
    body = {"error": {"code": 429, "message": "Quota exceeded", "status": "RESOURCE_EXHAUSTED"}}
    http_client = _client(lambda request: httpx.Response(429, json=body))
    recognizer = RecognitionClient(ENDPOINT, http_client=http_client)
    try:
        with pytest.raises(RecognitionError) as exc_info:
            await recognizer.recognize("QUJD", "image/png", AuthToken(kind="apiKey", value="k"))
    finally:
        await http_client.aclose()

    assert exc_info.value.status == 429
    assert exc_info.value.detail == "Quota exceeded"
    assert exc_info.value.error_code == "recognition_failed"


@pytest.mark.asyncio
async def test_recognize_raw_error_body_is_truncated():
    http_client = _client(lambda request: httpx.Response(500, text="y" * 500))
    recognizer = RecognitionClient(ENDPOINT, http_client=http_client)
    try:
        with pytest.raises(RecognitionError) as exc_info:
            await recognizer.recognize("QUJD", "image/png", AuthToken(kind="apiKey", value="k"))
    finally:
        await http_client.aclose()

    assert exc_info.value.status == 500
    assert exc_info.value.detail == "y" * 140 + "…"


@pytest.mark.asyncio
async def test_recognize_error_inside_response_entry():
    payload = {"responses": [{"error": {"code": 3, "message": "Bad image data."}}]}
    http_client = _client(lambda request: httpx.Response(200, json=payload))
    recognizer = RecognitionClient(ENDPOINT, http_client=http_client)
    try:
        with pytest.raises(RecognitionError) as exc_info:
            await recognizer.recognize("QUJD", "image/png", AuthToken(kind="apiKey", value="k"))
    finally:
        await http_client.aclose()

    assert exc_info.value.detail == "Bad image data."
