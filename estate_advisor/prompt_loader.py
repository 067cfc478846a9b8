from __future__ import annotations

from functools import lru_cache
from pathlib import Path


@lru_cache(maxsize=32)
def load_prompt(prompt_path: Path) -> str:
    """Purpose: Load a prompt file as UTF-8 text and strip BOM if present.
    Inputs/Outputs: Input is a Path to the prompt file; output is the decoded string.
    Side Effects / State: Caches file contents per path for the process lifetime.
    Dependencies: Uses Path.read_text/read_bytes; used by the classifier and composer.
    Failure Modes: UnicodeDecodeError triggers a fallback decode with errors ignored,
        which can drop invalid bytes. Missing files raise FileNotFoundError.
    If Removed: Prompt templates cannot be loaded and LLM calls cannot be built.
    Testing Notes: Validate BOM-stripping and fallback decoding on non-UTF8 files.
    """
    # Read as UTF-8 and fall back to a tolerant decode if needed.
    try:
        return prompt_path.read_text(encoding="utf-8").lstrip("﻿")
    except UnicodeDecodeError:
        raw = prompt_path.read_bytes()
        text = raw.decode("utf-8", errors="ignore")
        return text.lstrip("﻿")


def render_prompt(template: str, **values: str) -> str:
    """Purpose: Fill <<NAME>> placeholders in a prompt template.
    Inputs/Outputs: Inputs are the template and keyword values; output is the prompt.
    Side Effects / State: None.
    Dependencies: None.
    Failure Modes: Unknown placeholders are left in place.
    If Removed: Templates would need str.format, which breaks on JSON braces.
    Testing Notes: render_prompt("<<A>>-<<B>>", A="1", B="2") -> "1-2".
    """
    # Plain replacement keeps literal braces in the templates intact.
    rendered = template
    for key, value in values.items():
        rendered = rendered.replace(f"<<{key.upper()}>>", value)
    return rendered
