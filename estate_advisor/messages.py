"""Canned replies in Spanish and English.

Every function here is pure: the same (language, name) always yields the same text.
Languages other than English fall back to Spanish, the agency's default.
"""

from __future__ import annotations

from typing import Optional, Sequence

from .listings import Listing
from .utils import format_price


def _lang(language: Optional[str]) -> str:
    return "en" if (language or "").lower().startswith("en") else "es"


def welcome(language: str = "es", name: Optional[str] = None) -> str:
    if _lang(language) == "en":
        if name:
            return f"Hi {name}! I'm your personal real-estate advisor. How can I help you today?"
        return "Hi! I'm your personal real-estate advisor. How can I help you today?"
    if name:
        return f"¡Hola {name}! Soy tu asesor inmobiliario personal. ¿En qué puedo ayudarte hoy?"
    return "¡Hola! Soy tu asesor inmobiliario personal. ¿En qué puedo ayudarte hoy?"


def image_analyzing(language: str = "es", name: Optional[str] = None) -> str:
    if _lang(language) == "en":
        if name:
            return f"{name}, I'm analyzing the property image, give me a moment..."
        return "I'm analyzing the property image, give me a moment..."
    if name:
        return f"{name}, estoy analizando la imagen de la propiedad, dame un momento..."
    return "Estoy analizando la imagen de la propiedad, dame un momento..."


def image_analysis_stub(language: str = "es") -> str:
    # Stand-in result until real image understanding exists.
    if _lang(language) == "en":
        return (
            "I've analyzed the property image. It looks like a property in good condition. "
            "Would you like more details about similar properties?"
        )
    return (
        "He analizado la imagen de la propiedad. Se ve como una propiedad en buen estado. "
        "¿Te gustaría saber más detalles sobre propiedades similares?"
    )


def error_apology(language: str = "es", name: Optional[str] = None) -> str:
    if _lang(language) == "en":
        if name:
            return f"Sorry {name}, I had a problem processing your message. Could you try again?"
        return "Sorry, I had a problem processing your message. Could you try again?"
    if name:
        return f"Lo siento {name}, tuve un problema al procesar tu mensaje. ¿Podrías intentarlo de nuevo?"
    return "Lo siento, tuve un problema al procesar tu mensaje. ¿Podrías intentarlo de nuevo?"


def human_handoff(language: str = "es", name: Optional[str] = None) -> str:
    if _lang(language) == "en":
        prefix = f"Of course, {name}. " if name else "Of course. "
        return prefix + "I've let one of our advisors know and they will contact you very soon."
    prefix = f"Claro, {name}. " if name else "Claro. "
    return prefix + "Ya avisé a uno de nuestros asesores y se pondrá en contacto contigo muy pronto."


def escalation_notice(sender: str, text: str, name: Optional[str] = None) -> str:
    """Staff-facing alert; always Spanish because it goes to the agency team."""
    who = f"{name} ({sender})" if name else sender
    return f"🔔 El cliente {who} pidió hablar con un asesor.\nÚltimo mensaje: {text}"


def upsell(language: str = "es") -> str:
    if _lang(language) == "en":
        return "While you wait, would you like me to show you the properties we have available?"
    return "Mientras tanto, ¿te gustaría que te muestre las propiedades que tenemos disponibles?"


def capabilities(language: str = "es", name: Optional[str] = None) -> str:
    if _lang(language) == "en":
        greeting = f"{name}, " if name else ""
        return (
            f"{greeting}I can help you with:\n"
            "🏠 Finding houses, apartments and land by area and budget\n"
            "💰 Prices and property details\n"
            "📋 Our complete inventory\n"
            "📸 Photos of the properties\n"
            "📅 Scheduling a visit with an advisor"
        )
    greeting = f"{name}, " if name else ""
    return (
        f"{greeting}puedo ayudarte con:\n"
        "🏠 Buscar casas, departamentos y terrenos por zona y presupuesto\n"
        "💰 Precios y detalles de cada propiedad\n"
        "📋 Nuestro inventario completo\n"
        "📸 Fotos de las propiedades\n"
        "📅 Agendar una visita con un asesor"
    )


def followup_question(language: str = "es") -> str:
    if _lang(language) == "en":
        return "Is there anything else I can help you with?"
    return "¿Hay algo más en lo que te pueda ayudar?"


def closing(language: str = "es", name: Optional[str] = None) -> str:
    if _lang(language) == "en":
        if name:
            return f"Thank you, {name}! Write to me whenever you need anything."
        return "Thank you! Write to me whenever you need anything."
    if name:
        return f"¡Gracias, {name}! Escríbeme cuando lo necesites."
    return "¡Gracias! Escríbeme cuando lo necesites."


def registration_prompt(language: str = "es") -> str:
    if _lang(language) == "en":
        return "Hi! Before we start, what is your name?"
    return "¡Hola! Antes de empezar, ¿cómo te llamas?"


def no_results(language: str = "es") -> str:
    if _lang(language) == "en":
        return "I couldn't find properties matching your search in our inventory."
    return "No encontré propiedades que coincidan con tu búsqueda en nuestro inventario."


def format_listing_results(listings: Sequence[Listing], language: str = "es") -> str:
    """Purpose: Render matched listings as a WhatsApp-formatted summary.
    Inputs/Outputs: Inputs are listings and language; output is the message text.
    Side Effects / State: None.
    Dependencies: format_price for the currency rendering.
    Failure Modes: An empty sequence yields the no-results text.
    If Removed: The inventory branch has nothing to send.
    Testing Notes: One listing at 1800000 renders "💰 $1,800,000".
    """
    if not listings:
        return no_results(language)
    count = len(listings)
    if _lang(language) == "en":
        header = f"📋 I found {count} property(ies) that might interest you:"
        footer = "Would you like more information about any of these properties?"
    else:
        header = f"📋 Encontré {count} propiedad(es) que podrían interesarte:"
        footer = "¿Te gustaría más información sobre alguna de estas propiedades?"
    blocks = [
        f"🏠 *{listing.title}*\n📍 {listing.location}\n💰 {format_price(listing.price)}\n{listing.description}".rstrip()
        for listing in listings
    ]
    return f"{header}\n\n" + "\n\n".join(blocks) + f"\n\n{footer}"


def full_inventory(listings: Sequence[Listing], language: str = "es") -> str:
    if not listings:
        return no_results(language)
    header = "📋 COMPLETE PROPERTY INVENTORY:" if _lang(language) == "en" else "📋 INVENTARIO COMPLETO DE PROPIEDADES:"
    lines = [
        f"{listing.id}. *{listing.title}* - {listing.location} - {format_price(listing.price)}"
        for listing in listings
    ]
    return header + "\n" + "\n".join(lines)


def admin_help() -> str:
    return (
        "Comandos disponibles:\n"
        "/blacklist add <número>\n"
        "/blacklist remove <número>\n"
        "/blacklist check <número>\n"
        "/blacklist list\n"
        "/help"
    )
