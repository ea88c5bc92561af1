import io

import pytest
from PIL import Image

import services.vision.openai_vision as ov
from domain.errors import InvalidInputError
from services.vision.openai_vision import FALLBACK_ANALYSIS, OpenAIVisionAnalyzer, normalize_ingredients, parse_analysis
from services.vision.processing import preprocess_photo


def test_parse_analysis_strips_fences_and_rounds():
    content = (
        '```json\n{"name": "Лагман", "calories": 612.6, "protein": 24.44, "fat": 19.96, "carbs": 80.05,'
        ' "ingredients": ["Лапша", "Говядина"], "weightG": 349.5, "confidence": 0.82}\n```'
    )

    a = parse_analysis(content)

    assert a.name == "Лагман"
    assert a.calories == 613
    assert a.protein == 24.4
    assert a.fat == 20.0
    assert a.weight_g == 350
    assert a.ingredients == ["Лапша", "Говядина"]


def test_parse_analysis_rejects_garbage():
    with pytest.raises(ValueError):
        parse_analysis("I think this is soup")
    with pytest.raises(KeyError):
        parse_analysis('{"calories": 1}')


@pytest.mark.parametrize(
    "raw,expected",
    [(["a", None, "", "b"], ["a", "b"]), ("Рис", ["Рис"]), (None, []), ([], [])],
)
def test_normalize_ingredients(raw, expected):
    assert normalize_ingredients(raw) == expected


@pytest.fixture
def no_cache(monkeypatch):
    stored = {}

    async def _get(b):
        return stored.get(b)

    async def _set(b, data, ttl_sec=0):
        stored[b] = data

    monkeypatch.setattr(ov, "get_cached_vision", _get)
    monkeypatch.setattr(ov, "set_cached_vision", _set)
    return stored


async def test_analyzer_falls_back_on_provider_error(monkeypatch, no_cache):
    async def _boom(self, image_url):
        raise RuntimeError("rate limited")

    monkeypatch.setattr(OpenAIVisionAnalyzer, "_infer", _boom)
    analyzer = OpenAIVisionAnalyzer(api_key="sk-test")

    assert await analyzer.analyze(b"img") is FALLBACK_ANALYSIS
    assert await analyzer.analyze_url("https://cdn.test/x.jpg") is FALLBACK_ANALYSIS
    assert no_cache == {}


async def test_analyzer_caches_by_image(monkeypatch, no_cache):
    calls = []

    async def _infer(self, image_url):
        calls.append(image_url)
        return parse_analysis('{"name": "Чай", "calories": 2, "protein": 0, "fat": 0, "carbs": 0.5}')

    monkeypatch.setattr(OpenAIVisionAnalyzer, "_infer", _infer)
    analyzer = OpenAIVisionAnalyzer(api_key="sk-test")

    first = await analyzer.analyze(b"img", "image/png")
    second = await analyzer.analyze(b"img", "image/png")

    assert first == second
    assert len(calls) == 1
    assert calls[0].startswith("data:image/png;base64,")


def _image(fmt: str, size=(2000, 1000)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, (10, 200, 10)).save(buf, format=fmt)
    return buf.getvalue()


def test_preprocess_downscales_jpeg():
    out = preprocess_photo(_image("JPEG"), "image/jpeg", 800)
    assert (out.width, out.height) == (800, 400)
    assert out.content_type == "image/jpeg"


def test_preprocess_keeps_png_and_small_images():
    out = preprocess_photo(_image("PNG", (300, 200)), "image/png", 800)
    assert (out.width, out.height) == (300, 200)
    assert out.content_type == "image/png"


def test_preprocess_rejects_non_image():
    with pytest.raises(InvalidInputError):
        preprocess_photo(b"%PDF-1.4", "image/jpeg")
