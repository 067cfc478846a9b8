import pytest

from conftest import ScriptedGenerator
from estate_advisor.classifier import IntentClassifier
from estate_advisor.gemini_client import GenerationError
from estate_advisor.listings import ListingType

VALID_JSON = (
    '{"language": "en", "is_domain_query": true, "needs_human": false,'
    ' "is_about_capabilities": true, "is_image_request": false}'
)


def _assert_safe_default(result):
    assert result.language == "es"
    assert result.is_domain_query is True
    assert result.needs_human is False
    assert result.is_about_capabilities is False
    assert result.is_image_request is False
    assert result.is_inventory_query is False
    assert result.source == "default"


@pytest.mark.asyncio
async def test_strong_local_match_skips_the_model(prompts_dir, sample_listings):
    generator = ScriptedGenerator()
    classifier = IntentClassifier(generator, prompts_dir)

    result = await classifier.classify("casa menos de 2 millones", sample_listings)

    assert generator.calls == []
    assert result.source == "local"
    assert result.is_inventory_query is False
    assert [listing.id for listing in result.matched_listings] == ["1"]
    assert result.language == "es"


@pytest.mark.asyncio
async def test_model_payload_is_used_when_valid(prompts_dir, sample_listings):
    generator = ScriptedGenerator([VALID_JSON])
    classifier = IntentClassifier(generator, prompts_dir, model="classifier-model")

    result = await classifier.classify("What can you do for me?", sample_listings)

    assert result.source == "model"
    assert result.language == "en"
    assert result.is_about_capabilities is True
    assert result.needs_human is False
    assert generator.calls[0]["model"] == "classifier-model"
    assert "What can you do for me?" in generator.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_fenced_payload_with_prose_is_parsed(prompts_dir, sample_listings):
    generator = ScriptedGenerator([f"Aquí está:\n```json\n{VALID_JSON}\n```\nSaludos"])
    result = await IntentClassifier(generator, prompts_dir).classify("hello there", sample_listings)
    assert result.source == "model"
    assert result.language == "en"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        GenerationError("quota exceeded"),
        "no tengo idea",
        '{"language": "es", "is_domain_query": "true", "needs_human": false,'
        ' "is_about_capabilities": false, "is_image_request": false}',
        '{"language": "es", "is_domain_query": true}',
        '{"language": "español", "is_domain_query": true, "needs_human": false,'
        ' "is_about_capabilities": false, "is_image_request": false',
        None,
    ],
)
async def test_failures_degrade_to_safe_default(prompts_dir, sample_listings, response):
    generator = ScriptedGenerator([response])
    result = await IntentClassifier(generator, prompts_dir).classify("hola, una pregunta", sample_listings)
    _assert_safe_default(result)


@pytest.mark.asyncio
async def test_empty_input_returns_default_without_calling_the_model(prompts_dir, sample_listings):
    generator = ScriptedGenerator()
    result = await IntentClassifier(generator, prompts_dir).classify("   ", sample_listings)
    _assert_safe_default(result)
    assert generator.calls == []


@pytest.mark.asyncio
async def test_default_keeps_local_criteria(prompts_dir, sample_listings):
    generator = ScriptedGenerator([RuntimeError("boom")])
    result = await IntentClassifier(generator, prompts_dir).classify("terreno de más de 5 millones", sample_listings)
    _assert_safe_default(result)
    assert result.matched_listings == []
    assert result.criteria.property_type == ListingType.LAND
    assert result.criteria.min_price == 5_000_000
    assert result.is_inventory_query is False


@pytest.mark.asyncio
async def test_local_phrases_are_merged_into_model_flags(prompts_dir, sample_listings):
    payload = (
        '{"language": "es", "is_domain_query": true, "needs_human": false,'
        ' "is_about_capabilities": false, "is_image_request": false}'
    )
    generator = ScriptedGenerator([payload])
    result = await IntentClassifier(generator, prompts_dir).classify(
        "Quiero hablar con un asesor humano por favor", sample_listings
    )
    assert result.source == "model"
    assert result.needs_human is True
