"""
Mission generator — Gemini-powered daily scenarios.

The disaster type is chosen here (caller hint or random) and never taken
from the model's answer; Gemini only writes the title and overview.
"""

from __future__ import annotations

import os
import re
import json
import random
import logging
from dotenv import load_dotenv
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_core.messages import HumanMessage, SystemMessage

from models import DisasterType, GeneratedMission, MissionState

load_dotenv()

logger = logging.getLogger(__name__)

# ── Model fallback chain ──────────────────────────────────────
# Primary: gemma-3-27b-it   (higher rate limits, good quality)
# Fallback: gemini-2.0-flash-lite (lighter model, separate quota)
# Last:     gemini-2.0-flash (best quality but strict 15 RPM limit)

MODEL_CHAIN = ["gemma-3-27b-it", "gemini-2.0-flash-lite", "gemini-2.0-flash"]

_llm_cache: dict[str, ChatGoogleGenerativeAI] = {}


def _get_llm(model_name: str) -> ChatGoogleGenerativeAI:
    if model_name not in _llm_cache:
        _llm_cache[model_name] = ChatGoogleGenerativeAI(
            model=model_name,
            google_api_key=os.getenv("GOOGLE_API_KEY"),
            temperature=0.8,
            max_retries=1,
        )
    return _llm_cache[model_name]


async def _invoke_with_fallback(messages, schema):
    """
    Invoke the chain with automatic fallback on rate limits.
    Gemma has no system instructions or JSON mode, so for it the system
    prompt is merged into the user turn and JSON is parsed by hand.
    """
    last_error = None
    for model_name in MODEL_CHAIN:
        try:
            llm = _get_llm(model_name)
            if "gemma" in model_name.lower():
                msgs = _merge_system_into_user(messages)
                json_instruction = (
                    "\n\nIMPORTANT: Respond ONLY with valid JSON matching this schema, "
                    "no markdown fences, no explanation:\n"
                    f"{schema.model_json_schema()}\n"
                )
                msgs[-1] = HumanMessage(content=msgs[-1].content + json_instruction)
                raw = await llm.ainvoke(msgs)
                result = parse_json_response(raw.content, schema)
            else:
                result = await llm.with_structured_output(schema).ainvoke(messages)

            logger.info(f"Using model: {model_name}")
            return result
        except Exception as e:
            err_str = str(e)
            if "429" in err_str or "RESOURCE_EXHAUSTED" in err_str:
                logger.warning(f"{model_name} rate-limited, trying fallback...")
                last_error = e
                continue
            elif "400" in err_str and ("Developer instruction" in err_str or "JSON mode" in err_str):
                logger.warning(f"{model_name} unsupported feature, trying fallback...")
                last_error = e
                continue
            else:
                raise
    raise last_error or RuntimeError("All models exhausted")


def parse_json_response(text: str, schema):
    """Parse JSON from raw model text (fences allowed) and validate it."""
    cleaned = re.sub(r"```(?:json)?\s*", "", text).strip()
    cleaned = re.sub(r"```\s*$", "", cleaned).strip()

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"(\{.*\})", cleaned, re.DOTALL)
        if not match:
            raise ValueError(f"Could not parse JSON from model response: {text[:200]}")
        data = json.loads(match.group(1))

    return schema.model_validate(data)


def _merge_system_into_user(messages) -> list:
    merged = []
    system_content = ""
    for msg in messages:
        if isinstance(msg, SystemMessage):
            system_content += msg.content + "\n\n"
        elif isinstance(msg, HumanMessage) and system_content:
            merged.append(HumanMessage(content=system_content + msg.content))
            system_content = ""
        else:
            merged.append(msg)
    return merged


# ──────────────────────────────────────────────────────────────
# Mission generation
# ──────────────────────────────────────────────────────────────

MISSION_SYSTEM_PROMPT = """\
You generate missions for a disaster-preparedness training game.
Write a realistic, engaging scenario that prepares the player for the given
disaster by walking to a nearby evacuation shelter.

Return JSON with:
  - title: short, action-oriented mission title (max 60 characters)
  - overview: 2-3 sentences describing the scenario, the goal and what the
    player should do
  - disaster_type: exactly the disaster type given in the prompt

Requirements:
  - Educational and practical, specific to the given disaster
  - Focus on real evacuation behaviour
"""


def choose_disaster_type(hint: DisasterType | None = None, rng: random.Random | None = None) -> DisasterType:
    if hint is not None:
        return hint
    return (rng or random).choice(list(DisasterType))


def build_mission_prompt(disaster_type: DisasterType, context: str = "") -> str:
    prompt = f"Generate a mission scenario for a {disaster_type.value} disaster"
    if context:
        prompt += f", based on this context: {context}"
    prompt += f". disaster_type must be exactly \"{disaster_type.value}\"."
    return prompt


async def generate_mission(
    user_id: str,
    context: str = "",
    disaster_type_hint: DisasterType | None = None,
) -> dict:
    """Ask Gemini for a scenario and return the ``missions`` row to insert."""
    disaster_type = choose_disaster_type(disaster_type_hint)
    logger.info(f"Generating {disaster_type.value} mission for {user_id}")

    result: GeneratedMission = await _invoke_with_fallback(
        [
            SystemMessage(content=MISSION_SYSTEM_PROMPT),
            HumanMessage(content=build_mission_prompt(disaster_type, context)),
        ],
        schema=GeneratedMission,
    )

    return {
        "user_id": user_id.lower(),
        "title": result.title,
        "overview": result.overview,
        "disaster_type": disaster_type.value,
        "status": MissionState.ACTIVE.value,
    }
