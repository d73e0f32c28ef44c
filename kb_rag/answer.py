"""Answer a question from retrieved passages."""

from __future__ import annotations

from typing import Sequence

from langchain_core.documents import Document
from langchain_core.prompts import PromptTemplate

from .llm import CompletionService

NO_CONTEXT = "No relevant context was found."

PROMPT_TEMPLATE = """You are a helpful assistant. Answer the user's question using the context below.
If the context does not contain the answer, say that you don't know. Do not make anything up.

Context:
{context}

Question: {question}

Answer:"""


def format_context(documents: Sequence[Document]) -> str:
    """Join passages in retrieval order, or return ``NO_CONTEXT``."""
    if not documents:
        return NO_CONTEXT
    return "\n\n".join(doc.page_content for doc in documents)


class AnswerSynthesizer:
    """
    Build the answer prompt from retrieved passages and ask the completion service.

    Passages are joined in the order retrieval returned them. With no passages
    the context is the ``NO_CONTEXT`` sentinel, so the model is still asked.
    """

    def __init__(self, completion: CompletionService, template: str = PROMPT_TEMPLATE):
        self._completion = completion
        self._prompt = PromptTemplate.from_template(template)

    def build_prompt(self, question: str, documents: Sequence[Document]) -> str:
        """
        Render the prompt for ``question``.

        Args:
            question: The user question, unmodified
            documents: Retrieved passages, best first

        Returns:
            The complete prompt text
        """
        return self._prompt.format(context=format_context(documents), question=question)

    def synthesize(self, question: str, documents: Sequence[Document]) -> str:
        """
        Return the completion for the assembled prompt, unmodified.

        Raises:
            ExternalServiceError: If the completion service fails
        """
        return self._completion.complete(self.build_prompt(question, documents))
