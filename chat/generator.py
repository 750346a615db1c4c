# chat/generator.py - LLM response generator behind a generate(context, message) contract
from typing import Optional, Protocol

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI

from config import LLM_MAX_TOKENS, LLM_MODEL, LLM_TIMEOUT_SECONDS, SYSTEM_PROMPT
from utils.logger import get_chat_logger

logger = get_chat_logger()


class GenerationError(Exception):
    """Response generation failed (quota, auth, network, empty output)."""
    pass


class ResponseGenerator(Protocol):
    def generate(self, system_context: str, user_message: str) -> str:
        ...


class OpenAIResponseGenerator:
    """Chat completion via LangChain; the model client is built on first use."""

    def __init__(
        self,
        model: str = LLM_MODEL,
        max_tokens: int = LLM_MAX_TOKENS,
        timeout: int = LLM_TIMEOUT_SECONDS,
        api_key: Optional[str] = None,
    ):
        self._model_name = model
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._api_key = api_key
        self._chain = None

    def _build_chain(self):
        kwargs = {
            "model": self._model_name,
            "temperature": 0,
            "max_tokens": self._max_tokens,
            "timeout": self._timeout,
            "max_retries": 0,
        }
        if self._api_key:
            kwargs["api_key"] = self._api_key
        model = ChatOpenAI(**kwargs)

        prompt = ChatPromptTemplate.from_messages([
            ("system", SYSTEM_PROMPT),
            ("human", "{question}"),
        ])
        return prompt | model | StrOutputParser()

    def generate(self, system_context: str, user_message: str) -> str:
        try:
            if self._chain is None:
                self._chain = self._build_chain()
            answer = self._chain.invoke({"context": system_context, "question": user_message})
        except Exception as e:
            raise GenerationError(f"{type(e).__name__}: {e}") from e

        if not answer or not answer.strip():
            raise GenerationError("Model returned an empty response")
        return answer.strip()
