"""
Outbound message content.

Plain strings and Graph API interactive payloads. Nothing here talks to the
provider; see dispatcher.py for that.
"""

from typing import Any


DEFAULT_WELCOME_MESSAGE = """Hi! 👋

Thanks for reaching out.

I help businesses grow with:

🌐 Website Development
🎨 UI/UX & Website Design
🚀 SEO & Search Ranking Improvement
📈 Google Analytics & Tracking Setup
⚙️ Website Speed Optimization
💼 E-commerce & Custom Web Solutions

How can I help you today? 🙂"""

DEFAULT_CTA_BODY = (
    "Welcome back! 👋\n\n"
    "Have a look at our work and get in touch through the website."
)

# Human readable noun for each selection sub-type
SELECTION_NOUNS = {
    "list_reply": "option",
    "button_reply": "button",
}


def selection_ack(selection_type: str, selection: dict[str, Any]) -> str:
    """Confirmation text for a list or button selection."""
    noun = SELECTION_NOUNS.get(selection_type, "option")
    return f"You selected the {noun} with ID {selection.get('id')} - Title {selection.get('title')}"


def cta_url_interactive(body: str, display_text: str, url: str) -> dict[str, Any]:
    """Call-to-action interactive message pointing at a URL."""
    return {
        "type": "cta_url",
        "body": {"text": body},
        "action": {
            "name": "cta_url",
            "parameters": {
                "display_text": display_text,
                "url": url,
            },
        },
    }


def interactive_body_text(interactive: dict[str, Any]) -> str | None:
    """Text shown in the body of an interactive payload, used for ledger rows."""
    body = interactive.get("body") or {}
    return body.get("text")


def sample_list_interactive() -> dict[str, Any]:
    """Two-section list message; its rows come back as list_reply selections."""
    return {
        "type": "list",
        "header": {"type": "text", "text": "Message Header"},
        "body": {"text": "This is a interactive list message"},
        "footer": {"text": "This is the message footer"},
        "action": {
            "button": "Tap for the options",
            "sections": [
                {
                    "title": "First Section",
                    "rows": [
                        {
                            "id": "first_option",
                            "title": "First option",
                            "description": "This is the description of the first option",
                        },
                        {
                            "id": "second_option",
                            "title": "Second option",
                            "description": "This is the description of the second option",
                        },
                    ],
                },
                {
                    "title": "Second Section",
                    "rows": [{"id": "third_option", "title": "Third option"}],
                },
            ],
        },
    }


def sample_buttons_interactive() -> dict[str, Any]:
    """Reply buttons message; a tap comes back as a button_reply selection."""
    return {
        "type": "button",
        "header": {"type": "text", "text": "Message Header"},
        "body": {"text": "This is a interactive reply buttons message"},
        "footer": {"text": "This is the message footer"},
        "action": {
            "buttons": [
                {"type": "reply", "reply": {"id": "first_button", "title": "First Button"}},
                {"type": "reply", "reply": {"id": "second_button", "title": "Second Button"}},
            ]
        },
    }


# Sample interactive messages an operator can send by name
SAMPLE_INTERACTIVES = {
    "list": sample_list_interactive,
    "buttons": sample_buttons_interactive,
}
