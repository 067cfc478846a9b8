from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from .listings import Listing
from .prompt_loader import load_prompt, render_prompt
from .utils import format_price

logger = logging.getLogger("estate_advisor.composer")

PERSONA_PROMPT = "system_persona.txt"


@dataclass
class ComposedPrompt:
    user_prompt: str
    system_prompt: str


class PromptComposer:
    """Builds the grounded (user prompt, system prompt) pair for one turn."""

    def __init__(self, prompts_dir: Path) -> None:
        self._persona_path = prompts_dir / PERSONA_PROMPT

    def build_system_prompt(
        self,
        listings: Sequence[Listing],
        display_name: Optional[str] = None,
        instructions: Optional[Sequence[str]] = None,
    ) -> str:
        """Purpose: Render the persona rules with the current listing snapshot.
        Inputs/Outputs: Inputs are listings, optional display name and operator
            instructions; output is the system prompt text.
        Side Effects / State: None; called every turn so snapshot changes show up at once.
        Dependencies: load_prompt/render_prompt and the system_persona.txt template.
        Failure Modes: A missing template raises FileNotFoundError to the caller.
        If Removed: Generated answers lose grounding in the real inventory.
        Testing Notes: The prompt contains every listing title and the name line.
        """
        # Fill the template from the live snapshot; nothing here is cached.
        template = load_prompt(self._persona_path)
        name_line = f"\nEl cliente se llama {display_name}. Llámalo por su nombre de vez en cuando.\n" if display_name else ""
        instruction_lines = [line.strip() for line in instructions or [] if line and line.strip()]
        instructions_block = ""
        if instruction_lines:
            numbered = "\n".join(f"- {line}" for line in instruction_lines)
            instructions_block = f"\nInstrucciones adicionales:\n{numbered}\n"
        listings_json = json.dumps(
            [listing.to_prompt_dict() for listing in listings],
            ensure_ascii=False,
            indent=2,
        )
        return render_prompt(
            template,
            name_line=name_line,
            instructions=instructions_block,
            listings_json=listings_json,
        )

    def compose(
        self,
        context: str,
        listings: Sequence[Listing],
        matched: Optional[Sequence[Listing]] = None,
        display_name: Optional[str] = None,
        instructions: Optional[Sequence[str]] = None,
    ) -> ComposedPrompt:
        """Purpose: Assemble the request handed verbatim to the generation call.
        Inputs/Outputs: Inputs are the rendered history context, snapshot, optional
            matched subset, display name and instructions; output is ComposedPrompt.
        Side Effects / State: Logs prompt sizes.
        Dependencies: build_system_prompt, format_price.
        Failure Modes: Propagates template loading errors.
        If Removed: The domain-query branch has no prompt to send.
        Testing Notes: With matches, the user prompt lists them before the context.
        """
        # Matched listings go first so the model cites them before the rest.
        system_prompt = self.build_system_prompt(listings, display_name, instructions)
        parts: List[str] = []
        if matched:
            lines = [
                f"- [{listing.id}] {listing.title} | {listing.location} | {format_price(listing.price)}"
                for listing in matched
            ]
            parts.append("Propiedades relevantes para esta consulta:\n" + "\n".join(lines))
        parts.append(context)
        user_prompt = "\n\n".join(parts)
        logger.debug(
            "composed_prompt system_chars=%s user_chars=%s matched=%s",
            len(system_prompt),
            len(user_prompt),
            len(matched or []),
        )
        return ComposedPrompt(user_prompt=user_prompt, system_prompt=system_prompt)
