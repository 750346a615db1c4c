# chat/pipeline.py - Retrieve document context and generate a reply
import time
from dataclasses import dataclass
from typing import Callable, List, TypedDict

from langgraph.graph import END, START, StateGraph

from chat.generator import ResponseGenerator
from config import GENERATION_ERROR_RESPONSE, NO_DOCUMENTS_RESPONSE
from utils.logger import get_chat_logger

logger = get_chat_logger()

OUTCOME_ANSWERED = "answered"
OUTCOME_NO_DOCUMENTS = "no_documents"
OUTCOME_FAILED = "failed"


class ReplyState(TypedDict):
    """State for the reply graph."""
    chatbot_id: str
    question: str
    context: str
    answer: str
    outcome: str


@dataclass(frozen=True)
class Reply:
    text: str
    outcome: str
    response_time_ms: int


class ReplyPipeline:
    """
    retrieve -> generate, with a no-documents branch.

    Collaborator failures (document store or generator) never escape: they
    become the fixed apology reply and the internal error is only logged.
    """

    def __init__(self, get_documents: Callable[[str], List[str]], generator: ResponseGenerator):
        self._get_documents = get_documents
        self._generator = generator
        self._graph = self._build_graph()

    def _build_graph(self):
        def retrieve(state: ReplyState) -> dict:
            chatbot_id = state["chatbot_id"]
            try:
                documents = self._get_documents(chatbot_id)
            except Exception:
                logger.exception(f"[{chatbot_id}] Document lookup failed")
                return {"outcome": OUTCOME_FAILED, "answer": GENERATION_ERROR_RESPONSE}

            if not documents:
                logger.info(f"[{chatbot_id}] No training documents, sending fallback reply")
                return {"outcome": OUTCOME_NO_DOCUMENTS, "answer": NO_DOCUMENTS_RESPONSE}

            logger.debug(f"[{chatbot_id}] Retrieved {len(documents)} documents")
            return {"context": "\n\n".join(documents)}

        def generate(state: ReplyState) -> dict:
            chatbot_id = state["chatbot_id"]
            try:
                answer = self._generator.generate(state["context"], state["question"])
            except Exception as e:
                logger.error(f"[{chatbot_id}] Response generation failed: {e}")
                return {"outcome": OUTCOME_FAILED, "answer": GENERATION_ERROR_RESPONSE}
            return {"outcome": OUTCOME_ANSWERED, "answer": answer}

        def route_after_retrieve(state: ReplyState) -> str:
            return "generate" if not state.get("outcome") else END

        graph = StateGraph(ReplyState)
        graph.add_node("retrieve", retrieve)
        graph.add_node("generate", generate)

        graph.add_edge(START, "retrieve")
        graph.add_conditional_edges("retrieve", route_after_retrieve, ["generate", END])
        graph.add_edge("generate", END)

        return graph.compile()

    def reply(self, chatbot_id: str, question: str) -> Reply:
        start_time = time.time()
        result = self._graph.invoke({
            "chatbot_id": chatbot_id,
            "question": question,
            "context": "",
            "answer": "",
            "outcome": "",
        })
        elapsed_ms = int((time.time() - start_time) * 1000)
        logger.info(f"[{chatbot_id}] Reply {result['outcome']} in {elapsed_ms}ms")
        return Reply(text=result["answer"], outcome=result["outcome"], response_time_ms=elapsed_ms)
