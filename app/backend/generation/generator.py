"""
Groq-backed generation for the crop advisory endpoints.

These functions are the expensive suppliers the AI cache sits in front
of. They raise GenerationError instead of returning error text, so a
failed call can never end up cached and served to the next farmer.
"""
import json
import logging
import os
from datetime import date
from typing import Any, Dict, List, Optional

from groq import AsyncGroq

logger = logging.getLogger(__name__)

CHAT_MODEL = os.getenv("GROQ_CHAT_MODEL", "llama-3.3-70b-versatile")
PLANNING_MODEL = os.getenv("GROQ_PLANNING_MODEL", "llama-3.3-70b-versatile")
VISION_MODEL = os.getenv("GROQ_VISION_MODEL", "meta-llama/llama-4-scout-17b-16e-instruct")

# Client is a module-level singleton to reuse the underlying connection pool
_async_groq_client: Optional[AsyncGroq] = None


class GenerationError(Exception):
    """The generative backend failed or returned nothing usable."""


def get_async_groq_client() -> AsyncGroq:
    global _async_groq_client
    if _async_groq_client is None:
        api_key = os.environ.get("GROQ_API_KEY")
        if not api_key:
            raise GenerationError("GROQ_API_KEY is not configured")
        _async_groq_client = AsyncGroq(api_key=api_key)
    return _async_groq_client


def current_season(today: Optional[date] = None) -> str:
    """Indian agricultural season for a date: Kharif (Jun-Oct), Rabi (Nov-Feb), Zaid (Mar-May)."""
    month = (today or date.today()).month
    if 6 <= month <= 10:
        return "Kharif"
    if month >= 11 or month <= 2:
        return "Rabi"
    return "Zaid"


CHAT_SYSTEM_PROMPT = """You are an agricultural advisor for Indian farmers.
Answer practically and concisely, in the language the farmer used.

### Rules: ###
1. Prefer locally available, affordable treatments and name dosages when you give them.
2. Take the current season and region into account when they are provided.
3. If a question needs a field visit or lab test to answer safely, say so.
4. Do NOT invent product names or government schemes.
"""

PLANNING_SYSTEM_PROMPT = """You are a crop planning expert for Indian agriculture.
Recommend crops for the farmer's land and conditions.

Respond ONLY with a JSON object of the form:
{"recommendedCrops": [{"name": str, "suitability": int, "reason": str,
  "expectedYield": str, "waterRequirement": str}], "tips": [str]}
"""

DIAGNOSIS_SYSTEM_PROMPT = """You are a plant pathologist. Identify the most likely
disease, pest or deficiency from the farmer's description and photo, state your
confidence, and give treatment and prevention steps."""


def _completion_text(completion: Any) -> str:
    try:
        text = completion.choices[0].message.content
    except (AttributeError, IndexError) as e:
        raise GenerationError(f"Malformed completion from LLM service: {e}") from e
    if not text or not text.strip():
        raise GenerationError("AI response was empty or blocked")
    return text


async def _complete(model: str, messages: List[Dict[str, Any]], temperature: float, max_tokens: int) -> str:
    client = get_async_groq_client()
    try:
        completion = await client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    except Exception as e:
        logger.error("Error calling Groq API: %s", e)
        raise GenerationError(f"Error communicating with LLM service: {e}") from e
    return _completion_text(completion)


async def generate_chat_reply(message: str, context: Dict[str, Any], history: Optional[List[Any]] = None) -> str:
    """
    Answer a farmer's chat message given season/region/crop context and
    prior turns of the conversation.
    """
    context_lines = [f"{k}: {v}" for k, v in context.items() if v]
    system = CHAT_SYSTEM_PROMPT
    if context_lines:
        system += "\n### Farmer context ###\n" + "\n".join(context_lines)

    messages = [{"role": "system", "content": system}]
    for msg in history or []:
        role = msg.role if hasattr(msg, "role") else msg.get("role", "user")
        text = msg.text if hasattr(msg, "text") else msg.get("text", "")
        mapped_role = "assistant" if role in ("model", "assistant", "bot") else "user"
        messages.append({"role": mapped_role, "content": text})
    messages.append({"role": "user", "content": message.strip()})

    return await _complete(CHAT_MODEL, messages, temperature=0.3, max_tokens=800)


async def generate_crop_plan(params: Dict[str, Any]) -> str:
    user_message = "Plan crops for these conditions:\n" + json.dumps(params, ensure_ascii=False, indent=2)
    messages = [
        {"role": "system", "content": PLANNING_SYSTEM_PROMPT},
        {"role": "user", "content": user_message},
    ]
    return await _complete(PLANNING_MODEL, messages, temperature=0.2, max_tokens=1500)


async def generate_diagnosis(description: str, crop: Optional[str] = None, image_base64: Optional[str] = None) -> str:
    text = f"Crop: {crop or 'unknown'}\nSymptoms: {description}"
    content: Any = text
    if image_base64:
        content = [
            {"type": "text", "text": text},
            {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{image_base64}"}},
        ]
    messages = [
        {"role": "system", "content": DIAGNOSIS_SYSTEM_PROMPT},
        {"role": "user", "content": content},
    ]
    return await _complete(VISION_MODEL, messages, temperature=0.1, max_tokens=1000)


def looks_like_plan(text: str) -> bool:
    """Only plans that carry a JSON object are worth caching."""
    return bool(text and text.strip()) and ("{" in text or "recommendedCrops" in text)
