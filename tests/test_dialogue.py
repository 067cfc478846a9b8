import pytest

from estate_advisor.dialogue import DialogueAct, detect_followup_answer


@pytest.mark.parametrize("text", ["sí", "Si, claro", "yes", "ok", "dale", "sure!"])
def test_affirmations(text):
    assert detect_followup_answer(text) == DialogueAct.AFFIRM


@pytest.mark.parametrize("text", ["no", "No, gracias", "nope", "así está bien"])
def test_negations(text):
    assert detect_followup_answer(text) == DialogueAct.NEGATE


@pytest.mark.parametrize(
    "text",
    [
        "si tienen casas en Escobedo",
        "no tienen terrenos",
        "sí, de 2 millones",
        "sí me interesa saber cuánto cuesta la casa grande",
        "¿cuál es la más barata?",
    ],
)
def test_anything_else_is_a_new_query(text):
    assert detect_followup_answer(text) == DialogueAct.NEW_QUERY
