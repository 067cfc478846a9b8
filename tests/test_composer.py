from estate_advisor.composer import PromptComposer


def test_system_prompt_carries_snapshot_name_and_instructions(prompts_dir, sample_listings):
    composer = PromptComposer(prompts_dir)

    prompt = composer.build_system_prompt(sample_listings, display_name="Ana", instructions=["Visitas de lunes a sábado"])

    assert "Casa en Escobedo" in prompt
    assert "Terreno en Santiago" in prompt
    assert "Ana" in prompt
    assert "Visitas de lunes a sábado" in prompt
    assert "<<" not in prompt


def test_system_prompt_is_rebuilt_from_current_snapshot(prompts_dir, sample_listings):
    composer = PromptComposer(prompts_dir)
    first = composer.compose("hola", sample_listings)
    second = composer.compose("hola", sample_listings[:1])
    assert "Casa en Zuazua" in first.system_prompt
    assert "Casa en Zuazua" not in second.system_prompt


def test_matched_listings_are_itemized_before_the_context(prompts_dir, sample_listings):
    composer = PromptComposer(prompts_dir)
    composed = composer.compose("Cliente: Busco casa\n\nConsulta actual del cliente: barata", sample_listings, matched=sample_listings[:1])

    assert composed.user_prompt.startswith("Propiedades relevantes para esta consulta:")
    assert "- [1] Casa en Escobedo | Escobedo | $1,800,000" in composed.user_prompt
    assert composed.user_prompt.endswith("barata")


def test_without_matches_user_prompt_is_the_context(prompts_dir, sample_listings):
    composed = PromptComposer(prompts_dir).compose("¿Qué zonas manejan?", sample_listings)
    assert composed.user_prompt == "¿Qué zonas manejan?"
