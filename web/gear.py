"""Cycling gear recommendations from an LLM.

POST /api/gear-recommendations takes the rider's bicycle details and
riding preferences and returns free-text advice.
"""

import logging
from typing import Any, Optional

from flask import Blueprint, g, jsonify, request

from storefront.logging_config import log_store_event

from .config import LLM_MODEL, MIN_PREFERENCES_LENGTH
from .services import get_services

__all__ = ["gear", "make_gear_prompt", "generate_gear_recommendations", "GearRecommendationError"]

logger = logging.getLogger(__name__)

gear = Blueprint("gear", __name__, url_prefix="/api")

PREFERENCES_ERROR = (
    f"Please describe your riding preferences in more detail (at least {MIN_PREFERENCES_LENGTH} characters)."
)
GENERATION_ERROR = "Sorry, we couldn't generate recommendations at this time. Please try again later."


class GearRecommendationError(Exception):
    """The LLM call failed or returned no text."""


def _get_openai_client():
    """Get OpenAI client (lazy initialization)."""
    from openai import OpenAI
    return OpenAI()


def _format_details(cycle_details: Any) -> str:
    if isinstance(cycle_details, dict):
        lines = [f"- {key}: {value}" for key, value in cycle_details.items() if value not in (None, "")]
        return "\n".join(lines) if lines else "Not specified"
    return str(cycle_details or "Not specified")


def make_gear_prompt(cycle_details: Any, riding_preferences: str) -> str:
    return f"""You are an expert cycling gear advisor. Based on the following information about a cyclist and their bicycle, recommend appropriate cycling gear and accessories.

Cycle Details:
{_format_details(cycle_details)}

Riding Preferences:
{riding_preferences}

Recommend specific gear in these areas where relevant: safety equipment, clothing, accessories, maintenance tools and upgrades. For each item explain briefly why it suits this rider.

Format the recommendations as a list."""


def generate_gear_recommendations(
    cycle_details: Any,
    riding_preferences: str,
    client: Optional[Any] = None,
) -> str:
    """Ask the LLM for gear advice and return its text.

    Raises:
        GearRecommendationError: On API failure or an empty answer
    """
    prompt = make_gear_prompt(cycle_details, riding_preferences)
    input_payload = [{"role": "user", "content": [{"type": "input_text", "text": prompt}]}]

    log_store_event(
        "llm_call_gear",
        {"model": LLM_MODEL, "prompt_length": len(prompt), "request_id": g.get("request_id")},
        logger_name="gear",
    )

    try:
        client = client or _get_openai_client()
        resp = client.responses.create(model=LLM_MODEL, input=input_payload)
    except Exception as e:
        logger.error(f"Gear recommendation LLM call failed: {e}")
        raise GearRecommendationError(str(e)) from e

    for item in resp.output:
        if hasattr(item, "content") and item.content:
            raw = item.content[0].text  # type: ignore[union-attr]
            if raw and raw.strip():
                log_store_event(
                    "llm_response_gear",
                    {"model": LLM_MODEL, "response_length": len(raw)},
                    logger_name="gear",
                )
                return raw.strip()

    raise GearRecommendationError("LLM returned no text output")


@gear.route("/gear-recommendations", methods=["POST"])
def gear_recommendations():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    preferences = data.get("ridingPreferences")
    if not isinstance(preferences, str) or len(preferences.strip()) < MIN_PREFERENCES_LENGTH:
        return jsonify({"error": PREFERENCES_ERROR}), 400

    services = get_services()
    try:
        text = generate_gear_recommendations(
            data.get("cycleDetails"), preferences.strip(), client=services.llm_client
        )
    except GearRecommendationError as e:
        services.error_logger.log_error(
            error_type="llm_error",
            error_message=str(e),
            request_id=g.get("request_id"),
            endpoint=request.path,
            method=request.method,
            context={"model": LLM_MODEL},
        )
        return jsonify({"error": GENERATION_ERROR}), 500

    return jsonify({"recommendations": text})
