"""
Form flow heuristics.

The operator sends a form template to the lead; when the template shows up in
the chat the lead is moved to em_andamento. Field values are not parsed here.
"""

FORM_LABELS = ("nome:", "cpf:", "email:", "telefone:", "endereço:", "cep:")


def is_form_submission(text: str) -> bool:
    """True when the message carries every form label."""
    text_lower = text.lower()
    return all(label in text_lower for label in FORM_LABELS)
