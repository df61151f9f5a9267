"""Conversion of session history and the current question into provider-native conversations."""

import re
from typing import Any, Dict, List, Optional, Tuple

from .config import MAX_CHARS_PER_TURN, MAX_HISTORY_TURNS

_DATA_URI_RE = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)
_PDF_DATA_URI_RE = re.compile(r"^data:application/pdf;base64,(.+)$", re.DOTALL)

SYSTEM_PROMPTS = {
    "English": (
        "You are an expert problem-solving assistant. You will receive questions "
        "(e.g., math, chemistry, economics) from users. Your task is to:\n\n"
        "1. clearly state the final answer\n"
        "2. show detailed step-by-step reasoning process for solving the problem. "
        "Ensure every step is logical, complete, and easy to understand.\n\n"
        "Output language requirement: respond in English."
    ),
    "Chinese": (
        "你是一名解题助手。你将收到用户提出的问题（如数学题、化学题，经济题等），你的任务是：\n\n"
        "1. 首先明确的展示答案\n"
        "2. 展示详细的解题步骤和推理过程，确保具体且易于理解。\n"
        "输出语言要求：学科专用术语必须使用英文，例如：元素、化合物、反应名、公式等，"
        "这些专用词汇不需要翻译成中文。其他的非学科专用词汇必须使用中文。"
    ),
}

ATTACHMENT_ONLY_PROMPTS = {
    "English": (
        "Read the problem from the image/document and answer in English. "
        "Start with final answer, then provide detailed steps."
    ),
    "Chinese": "请识别图片/文档中的题目并用中文作答。先给出最终答案，再给出详细步骤。除化学术语外请使用中文。",
}

QUESTION_PREFIXES = {
    "English": "Question:",
    "Chinese": "用户题目：",
}


def system_prompt(language: str) -> str:
    return SYSTEM_PROMPTS.get(language, SYSTEM_PROMPTS["Chinese"])


def clip_text(value: str, max_chars: int = MAX_CHARS_PER_TURN) -> str:
    return value[:max_chars] if len(value) > max_chars else value


def sanitize_history(history: Any) -> List[Dict[str, Any]]:
    """
    Keep the recent, well-formed part of client-supplied history.

    Only the last MAX_HISTORY_TURNS turns are considered. Text and answers
    are clipped to MAX_CHARS_PER_TURN; blank answers, non-string values and
    turns with neither text nor images are dropped.

    Returns:
        List of {"user_text", "user_images", "model_answers"} dicts
    """
    if not isinstance(history, list):
        return []

    sanitized = []
    for turn in history[-MAX_HISTORY_TURNS:]:
        if not isinstance(turn, dict):
            continue

        raw_user_text = turn.get("userText", turn.get("user_text"))
        if not isinstance(raw_user_text, str):
            continue
        user_text = clip_text(raw_user_text)

        model_answers: Dict[str, str] = {}
        raw_answers = turn.get("modelAnswers", turn.get("model_answers"))
        if isinstance(raw_answers, dict):
            for model_id, answer in raw_answers.items():
                if not isinstance(answer, str):
                    continue
                clipped = clip_text(answer)
                if not clipped.strip():
                    continue
                model_answers[model_id] = clipped

        user_images: List[str] = []
        raw_images = turn.get("userImages", turn.get("user_images"))
        if isinstance(raw_images, list):
            for image in raw_images:
                if not isinstance(image, str):
                    continue
                normalized = image.strip()
                if normalized:
                    user_images.append(normalized)

        # Image-only turns are still context
        if not user_text.strip() and not user_images:
            continue

        sanitized.append({
            "user_text": user_text,
            "user_images": user_images,
            "model_answers": model_answers,
        })

    return sanitized


def split_data_uri(value: str, default_mime: str = "image/jpeg") -> Tuple[str, str]:
    """Split a base64 data URI into (mime type, data); raw base64 gets `default_mime`."""
    if value.startswith("data:"):
        match = _DATA_URI_RE.match(value)
        if match:
            return match.group(1), match.group(2)
    return default_mime, value


def _pdf_data(pdf: str) -> str:
    match = _PDF_DATA_URI_RE.match(pdf)
    return match.group(1) if match else pdf


def _image_url(image: str) -> str:
    return image if image.startswith("data:") else f"data:image/jpeg;base64,{image}"


def _current_text(question: str, images: List[str], pdfs: List[str], language: str) -> Optional[str]:
    if question.strip():
        return question
    if images or pdfs:
        return ATTACHMENT_ONLY_PROMPTS.get(language, ATTACHMENT_ONLY_PROMPTS["Chinese"])
    return None


def _assistant_answer(turn: Dict[str, Any], model_id: str) -> Optional[str]:
    answer = turn["model_answers"].get(model_id)
    if answer and answer.strip():
        return answer
    return None


# --- OpenAI ---

def _openai_image_part(image: str) -> Dict[str, Any]:
    return {"type": "image_url", "image_url": {"url": _image_url(image), "detail": "high"}}


def build_openai_messages(
    question: str,
    images: List[str],
    pdfs: List[str],
    history: List[Dict[str, Any]],
    model_id: str,
    language: str,
) -> List[Dict[str, Any]]:
    """Chat-style messages; the adapter adds the system prompt and maps them onto the Responses vocabulary."""
    messages: List[Dict[str, Any]] = []

    for turn in history:
        user_content: List[Dict[str, Any]] = [{"type": "text", "text": turn["user_text"]}]
        for image in turn["user_images"]:
            user_content.append(_openai_image_part(image))
        messages.append({"role": "user", "content": user_content})

        answer = _assistant_answer(turn, model_id)
        if answer:
            messages.append({"role": "assistant", "content": answer})

    content: List[Dict[str, Any]] = []
    for pdf in pdfs:
        content.append({"type": "input_file", "filename": "document.pdf", "file_data": pdf})
    text = _current_text(question, images, pdfs, language)
    if text:
        content.append({"type": "text", "text": text})
    for image in images:
        content.append(_openai_image_part(image))
    messages.append({"role": "user", "content": content})

    return messages


# --- Gemini ---

def _gemini_image_part(image: str) -> Dict[str, Any]:
    mime_type, data = split_data_uri(image)
    return {"inlineData": {"mimeType": mime_type, "data": data}}


def build_gemini_contents(
    question: str,
    images: List[str],
    pdfs: List[str],
    history: List[Dict[str, Any]],
    model_id: str,
    language: str,
) -> List[Dict[str, Any]]:
    prefix = QUESTION_PREFIXES.get(language, QUESTION_PREFIXES["Chinese"])
    contents: List[Dict[str, Any]] = []

    for turn in history:
        user_parts: List[Dict[str, Any]] = [{"text": f"{prefix}{turn['user_text']}"}]
        for image in turn["user_images"]:
            user_parts.append(_gemini_image_part(image))
        contents.append({"role": "user", "parts": user_parts})

        answer = _assistant_answer(turn, model_id)
        if answer:
            contents.append({"role": "model", "parts": [{"text": answer}]})

    current_parts: List[Dict[str, Any]] = []
    for pdf in pdfs:
        current_parts.append({"inlineData": {"mimeType": "application/pdf", "data": _pdf_data(pdf)}})
    if question.strip():
        current_parts.append({"text": f"{prefix}{question}"})
    elif images or pdfs:
        current_parts.append({"text": _current_text(question, images, pdfs, language)})
    for image in images:
        current_parts.append(_gemini_image_part(image))

    if current_parts:
        contents.append({"role": "user", "parts": current_parts})

    return contents


# --- Claude ---

def claude_image_part(image: str) -> Dict[str, Any]:
    media_type, data = split_data_uri(image)
    return {
        "type": "image",
        "source": {"type": "base64", "media_type": media_type, "data": data},
    }


def claude_pdf_part(pdf: str) -> Dict[str, Any]:
    return {
        "type": "document",
        "source": {"type": "base64", "media_type": "application/pdf", "data": _pdf_data(pdf)},
    }


def build_claude_messages(
    question: str,
    images: List[str],
    pdfs: List[str],
    history: List[Dict[str, Any]],
    model_id: str,
    language: str,
) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = []

    for turn in history:
        user_content: List[Dict[str, Any]] = []
        if turn["user_text"].strip():
            user_content.append({"type": "text", "text": turn["user_text"]})
        for image in turn["user_images"]:
            user_content.append(claude_image_part(image))
        if user_content:
            messages.append({"role": "user", "content": user_content})

        answer = _assistant_answer(turn, model_id)
        if answer:
            messages.append({"role": "assistant", "content": answer})

    current_content: List[Dict[str, Any]] = [claude_pdf_part(pdf) for pdf in pdfs]
    text = _current_text(question, images, pdfs, language)
    if text:
        current_content.append({"type": "text", "text": text})
    for image in images:
        current_content.append(claude_image_part(image))

    if current_content:
        messages.append({"role": "user", "content": current_content})

    return messages


CONVERSATION_BUILDERS = {
    "openai": build_openai_messages,
    "gemini": build_gemini_contents,
    "claude": build_claude_messages,
}


def build_conversation(
    provider: str,
    question: str,
    images: List[str],
    pdfs: List[str],
    history: List[Dict[str, Any]],
    model_id: str,
    language: str,
) -> List[Dict[str, Any]]:
    """Build the provider-native conversation for one model branch."""
    builder = CONVERSATION_BUILDERS.get(provider)
    if builder is None:
        raise ValueError(f"Unknown provider: {provider}")
    return builder(question, images, pdfs, history, model_id, language)
