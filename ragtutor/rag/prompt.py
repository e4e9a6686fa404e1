"""RAG prompt composition."""
from typing import Sequence

CONTEXT_SEPARATOR = "\n\n"


def format_context(documents: Sequence[str]) -> str:
    """Join retrieved documents, nearest first, into one context block."""
    return CONTEXT_SEPARATOR.join(doc.strip() for doc in documents if doc.strip())


def build_rag_prompt(base_prompt: str, user_prompt: str, context: str) -> str:
    """Compose the generation prompt.

    The user guidance section is left out when the guidance is blank.
    """
    sections = [base_prompt.strip()]

    if user_prompt and user_prompt.strip():
        sections.append(
            "The user may have provided extra information:\n" + user_prompt.strip()
        )

    sections.append("Context retrieved from files:\n---\n" + context)

    return "\n\n".join(sections) + "\n"
