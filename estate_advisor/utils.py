import json
import re
import unicodedata
from typing import Any, Dict, Iterable, Optional

CODE_FENCE_RE = re.compile(r"```(?:json|JSON)?")


def strip_accents(text: str) -> str:
    """Purpose: Lowercase text and drop diacritics while keeping punctuation.
    Inputs/Outputs: Input is a raw string; output is lowercase text without accents.
    Side Effects / State: None; pure function.
    Dependencies: Uses unicodedata; called by normalize_text and the price parser.
    Failure Modes: Returns an empty string when input is falsy.
    If Removed: Price phrases like "más de" stop matching their accent-free forms.
    Testing Notes: "Más de 2,000" -> "mas de 2,000".
    """
    # Decompose and drop combining marks so "á" and "a" compare equal.
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text.lower())
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def normalize_text(text: str) -> str:
    """Purpose: Normalize free-form text for stable keyword matching.
    Inputs/Outputs: Input is a raw string; output is a lowercase ASCII-only string with
        diacritics removed and whitespace collapsed.
    Side Effects / State: None; pure function.
    Dependencies: Uses strip_accents and regex; called by the matcher, classifier,
        dialogue detection, and listing normalization.
    Failure Modes: Returns an empty string when input is falsy; punctuation is
        replaced by spaces, which is intended for matching.
    If Removed: Keyword and phrase matching breaks on accents and punctuation.
    Testing Notes: "¿Sí, CLARO!" -> "si claro".
    """
    # Strip accents, then collapse everything that is not a word character.
    stripped = strip_accents(text)
    if not stripped:
        return ""
    cleaned = re.sub(r"[^a-z0-9\s]+", " ", stripped)
    return re.sub(r"\s+", " ", cleaned).strip()


def normalize_phone(number: str) -> str:
    """Purpose: Reduce a phone number or WhatsApp id to its digits.
    Inputs/Outputs: Input is a raw number such as "+52 81 1234-5678" or
        "5218112345678@s.whatsapp.net"; output is the digit string.
    Side Effects / State: None.
    Dependencies: None; used by blacklist and admin checks.
    Failure Modes: Returns an empty string when no digits are present.
    If Removed: Blacklist lookups become sensitive to formatting.
    Testing Notes: "+52 (81) 1234" -> "52811234".
    """
    if not number:
        return ""
    local = str(number).split("@", 1)[0]
    return "".join(ch for ch in local if ch.isdigit())


def phone_key(number: str) -> str:
    # Last ten digits, so country prefixes do not defeat membership checks.
    digits = normalize_phone(number)
    return digits[-10:]


def message_has_any_term(normalized: str, terms: Iterable[str]) -> bool:
    """Purpose: Check normalized text for any whole-word term in a term list.
    Inputs/Outputs: Inputs: normalized (str), terms (iterable[str]). Outputs: bool.
    Side Effects / State: None.
    Dependencies: None.
    Failure Modes: Returns False for empty inputs or empty term lists.
    If Removed: Keyword detection matches inside longer words ("casa" in "casada").
    Testing Notes: "si claro" matches {"si"}; "sitio" does not.
    """
    # Match full terms against a padded normalized string to avoid substrings.
    if not normalized or not terms:
        return False
    padded = f" {normalized} "
    for term in terms:
        if not term:
            continue
        if f" {term} " in padded:
            return True
    return False


def strip_code_fences(text: str) -> str:
    # Drop markdown fences such as ```json that models like to wrap output in.
    if not text:
        return ""
    return CODE_FENCE_RE.sub("", text).strip()


def extract_json_block(text: str) -> Optional[str]:
    """Purpose: Extract the first balanced JSON object block from an arbitrary string.
    Inputs/Outputs: Input is a raw string; output is JSON substring or None.
    Side Effects / State: None; pure function.
    Dependencies: None beyond built-ins; used by safe_json_loads.
    Failure Modes: Returns None if no opening brace exists or braces never balance.
    If Removed: Model outputs with surrounding prose cannot be parsed.
    Testing Notes: 'Sure! {"a": {"b": 1}} bye {"c": 2}' -> '{"a": {"b": 1}}'.
    """
    # Walk from the first "{" and track depth, ignoring braces inside strings.
    if not text:
        return None
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        ch = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def safe_json_loads(text: str) -> Optional[Dict[str, Any]]:
    """Purpose: Parse a JSON object from a model output string safely.
    Inputs/Outputs: Input is raw text; output is a dict or None if parsing fails.
    Side Effects / State: None; pure function.
    Dependencies: Uses strip_code_fences, extract_json_block and json.loads.
    Failure Modes: Returns None on JSONDecodeError, missing block, or non-object JSON.
    If Removed: Classification parsing crashes on malformed model output.
    Testing Notes: Fenced JSON parses; prose-only output returns None.
    """
    # Parse only the extracted JSON block to avoid non-JSON prefixes/suffixes.
    block = extract_json_block(strip_code_fences(text))
    if not block:
        return None
    try:
        data = json.loads(block)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    return data


def format_price(price: int) -> str:
    """Purpose: Render a price the way the es-MX currency format shows it.
    Inputs/Outputs: Input is an integer amount; output like "$1,800,000".
    Side Effects / State: None.
    Dependencies: None.
    Failure Modes: None for integers; floats are rounded to whole units.
    If Removed: Listing summaries show raw integers.
    Testing Notes: 1800000 -> "$1,800,000".
    """
    return f"${int(round(price)):,}"
