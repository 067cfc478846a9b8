from __future__ import annotations

from enum import Enum

from .listings import TYPE_SYNONYMS
from .matcher import INVENTORY_TERMS, extract_prices
from .utils import message_has_any_term, normalize_text

AFFIRM_TERMS = {
    "si",
    "sip",
    "claro",
    "claro que si",
    "por supuesto",
    "dale",
    "va",
    "ok",
    "okay",
    "oki",
    "de acuerdo",
    "me interesa",
    "perfecto",
    "yes",
    "yeah",
    "yep",
    "sure",
    "of course",
    "please",
}
NEGATE_TERMS = {
    "no",
    "nop",
    "nel",
    "no gracias",
    "asi esta bien",
    "es todo",
    "nada",
    "ninguno",
    "no thanks",
    "nope",
    "nah",
    "that s all",
    "thats all",
}
MAX_ANSWER_WORDS = 4
LISTING_KEYWORDS = [word for words in TYPE_SYNONYMS.values() for word in words]


class DialogueAct(str, Enum):
    AFFIRM = "affirm"
    NEGATE = "negate"
    NEW_QUERY = "new_query"


def _looks_like_query(normalized: str, message: str) -> bool:
    # Property words or prices mean the user is asking something new.
    if message_has_any_term(normalized, LISTING_KEYWORDS):
        return True
    if message_has_any_term(normalized, INVENTORY_TERMS):
        return True
    return bool(extract_prices(message))


def is_affirmation_message(message: str) -> bool:
    """Purpose: Detect short affirmative replies such as "sí" or "claro".
    Inputs/Outputs: Inputs: message (str). Outputs: bool.
    Side Effects / State: None.
    Dependencies: normalize_text, AFFIRM_TERMS, and listing keyword guards.
    Failure Modes: Returns False for mixed-content or long messages.
    If Removed: Follow-up answers are treated as brand new questions.
    Testing Notes: "Sí, claro" -> True; "si tienen casas en Escobedo" -> False.
    """
    # Accept only very short replies that carry no listing vocabulary.
    normalized = normalize_text(message)
    if not normalized:
        return False
    if _looks_like_query(normalized, message):
        return False
    if len(normalized.split()) > MAX_ANSWER_WORDS:
        return False
    if is_negative_message(message):
        return False
    return message_has_any_term(normalized, AFFIRM_TERMS)


def is_negative_message(message: str) -> bool:
    """Purpose: Detect short negative replies such as "no gracias".
    Inputs/Outputs: Inputs: message (str). Outputs: bool.
    Side Effects / State: None.
    Dependencies: normalize_text, NEGATE_TERMS, and listing keyword guards.
    Failure Modes: Returns False for long or mixed messages.
    If Removed: A declined follow-up never reaches the closing message.
    Testing Notes: "no, gracias" -> True; "no tienen terrenos" -> False.
    """
    # Accept only very short rejections.
    normalized = normalize_text(message)
    if not normalized:
        return False
    if _looks_like_query(normalized, message):
        return False
    if len(normalized.split()) > MAX_ANSWER_WORDS:
        return False
    return message_has_any_term(normalized, NEGATE_TERMS)


def detect_followup_answer(message: str) -> DialogueAct:
    """Purpose: Classify a reply to the follow-up question.
    Inputs/Outputs: Inputs: message (str). Outputs: DialogueAct.
    Side Effects / State: None.
    Dependencies: is_negative_message and is_affirmation_message.
    Failure Modes: Anything that is not a clean yes/no is NEW_QUERY.
    If Removed: The orchestrator cannot leave AWAITING_FOLLOWUP deliberately.
    Testing Notes: "yes" -> AFFIRM; "no" -> NEGATE; "casa en Zuazua" -> NEW_QUERY.
    """
    # Negatives win over affirmatives ("no, ok" is a no).
    if is_negative_message(message):
        return DialogueAct.NEGATE
    if is_affirmation_message(message):
        return DialogueAct.AFFIRM
    return DialogueAct.NEW_QUERY
