import logging
from typing import Any, Iterable, List, Optional

import openai
from langchain_core.messages import HumanMessage, SystemMessage

from quotedesk.app.services.errors import FileHandleNotFoundError, InferenceError

logger = logging.getLogger("quotedesk.llm")

DEFAULT_EXTRACTION_SYSTEM_PROMPT = (
    "You are a quotation extraction assistant. Extract pipe information from enquiries and match "
    "them with rates from the provided PDF rate files. Read the PDF files directly to find the correct rates."
)
CHAT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Reply normally in plain text. "
    "Do NOT return JSON unless the user explicitly asks for JSON."
)
_STALE_HANDLE_HINTS = ("were not found", "not found", "does not exist", "invalid file", "no such file")


def create_chat_llm(
    model: str,
    temperature: float,
    api_key: str | None = None,
    base_url: str | None = None,
    seed: int | None = None,
):
    if not api_key:
        raise ValueError("OPENAI_API_KEY is missing. Please set it as an environment variable.")
    from langchain_openai import ChatOpenAI

    kwargs: dict = {"model": model, "temperature": temperature, "openai_api_key": api_key}
    if base_url:
        kwargs["base_url"] = base_url
    if seed is not None:
        kwargs["seed"] = seed
    return ChatOpenAI(**kwargs)


def is_stale_handle_error(exc: BaseException) -> bool:
    """True when the inference service says a referenced file id no longer exists."""
    if not isinstance(exc, openai.APIStatusError):
        return False
    message = str(getattr(exc, "message", "") or exc).lower()
    if isinstance(exc, openai.NotFoundError):
        # An unknown model is a configuration problem, not a stale handle.
        return "model" not in message
    return "file" in message and any(hint in message for hint in _STALE_HANDLE_HINTS)


def classify_inference_error(exc: Exception) -> InferenceError:
    status = getattr(exc, "status_code", None)
    message = str(getattr(exc, "message", "") or exc) or exc.__class__.__name__
    if is_stale_handle_error(exc):
        return FileHandleNotFoundError(message, upstream_status=status)
    return InferenceError(message, upstream_status=status)


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    parts: List[str] = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") in ("text", "output_text"):
            parts.append(str(block.get("text") or ""))
    return "".join(parts)


def build_extraction_messages(prompt_text: str, instructions: str, file_ids: Iterable[str]) -> list:
    content: List[dict] = [{"type": "text", "text": prompt_text}]
    for file_id in file_ids:
        content.append({"type": "file", "file": {"file_id": file_id}})
    return [
        SystemMessage(content=instructions or DEFAULT_EXTRACTION_SYSTEM_PROMPT),
        HumanMessage(content=content),
    ]


class OpenAIInference:
    """File handles and completions against the OpenAI API.

    Uploads go through the ``openai`` client; completions go through
    LangChain ``ChatOpenAI`` with files attached as content blocks.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        model_extraction: str,
        model_chat: str,
        client: Any | None = None,
        extraction_llm: Any | None = None,
        chat_llm: Any | None = None,
    ):
        self.model_extraction = model_extraction
        self.model_chat = model_chat
        self.client = client or openai.OpenAI(api_key=api_key)
        llm = extraction_llm or create_chat_llm(model_extraction, 0.0, api_key=api_key)
        self.extraction_llm = llm.bind(response_format={"type": "json_object"})
        self.chat_llm = chat_llm or create_chat_llm(model_chat, 0.3, api_key=api_key)

    def upload_file(self, data: bytes, name: str) -> str:
        try:
            uploaded = self.client.files.create(file=(name, data, "application/pdf"), purpose="user_data")
        except openai.APIError as exc:
            raise classify_inference_error(exc) from exc
        logger.info("uploaded %s to inference service id=%s bytes=%d", name, uploaded.id, len(data))
        return uploaded.id

    def delete_file(self, file_id: str) -> None:
        try:
            self.client.files.delete(file_id)
        except openai.APIError as exc:
            raise classify_inference_error(exc) from exc
        logger.info("deleted inference file id=%s", file_id)

    def extract(self, prompt_text: str, instructions: str, file_ids: Iterable[str]) -> str:
        messages = build_extraction_messages(prompt_text, instructions, list(file_ids))
        try:
            result = self.extraction_llm.invoke(messages)
        except openai.APIError as exc:
            raise classify_inference_error(exc) from exc
        return _message_text(getattr(result, "content", result))

    def chat(self, message: str, context: Optional[str] = None) -> str:
        text = f"Context (last AI output):\n{context or 'No context provided'}\n\nUser question:\n{message}"
        try:
            result = self.chat_llm.invoke([SystemMessage(content=CHAT_SYSTEM_PROMPT), HumanMessage(content=text)])
        except openai.APIError as exc:
            raise classify_inference_error(exc) from exc
        return _message_text(getattr(result, "content", result))
