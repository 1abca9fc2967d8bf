import copy
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

import google.generativeai as genai

logger = logging.getLogger(__name__)

AFFIRMATION_KEYS = ("affirmations", "solutions", "motivational")

NETWORK_FAILURE = "network"
DECODE_FAILURE = "decode"

FALLBACK_AFFIRMATIONS = {
    "affirmations": [
        "I am capable of overcoming this challenge",
        "I have the strength to work through this situation",
        "I am worthy of positive change and growth",
        "I trust in my ability to find solutions",
        "I am resilient and can handle whatever comes my way",
    ],
    "solutions": [
        "Break down the problem into smaller, manageable steps",
        "Seek support from trusted friends, family, or professionals",
        "Practice self-care and maintain a positive mindset",
    ],
    "motivational": [
        "Every challenge is an opportunity for growth and learning",
        "You have overcome difficulties before and you can do it again",
    ],
}

FALLBACK_AFFIRMATION = (
    "I am capable of overcoming this challenge and growing stronger through it."
)

# first "{" through the last "}"
_JSON_SPAN = re.compile(r"\{[\s\S]*\}")


def build_model(api_key, model_name):
    genai.configure(api_key=api_key)
    return genai.GenerativeModel(model_name)


def build_affirmations_prompt(category, title, description, severity):
    return f"""
You are a compassionate AI assistant specializing in creating personalized affirmations and solutions for personal growth.

Problem Details:
- Category: {category}
- Title: {title}
- Description: {description}
- Severity (1-10): {severity}

Please provide:
1. 5 positive affirmations that are specific, empowering, and directly address the problem
2. 3 practical solutions or action steps
3. 2 motivational statements

Format your response as JSON with this structure:
{{
  "affirmations": [
    "affirmation 1",
    "affirmation 2",
    "affirmation 3",
    "affirmation 4",
    "affirmation 5"
  ],
  "solutions": [
    "solution 1",
    "solution 2",
    "solution 3"
  ],
  "motivational": [
    "motivational statement 1",
    "motivational statement 2"
  ]
}}

Make the affirmations:
- Present tense and positive
- Specific to the problem
- Believable and achievable
- Empowering and encouraging
- Personal and direct (use "I" statements)

Make the solutions:
- Practical and actionable
- Specific steps they can take
- Realistic and achievable
- Directly related to the problem

Make the motivational statements:
- Inspiring and uplifting
- Focus on growth and potential
- Encourage persistence and self-belief
"""


def build_personalized_prompt(category, description, tone="encouraging", length="medium"):
    return f"""
Create a personalized affirmation for someone dealing with:
Category: {category}
Problem: {description}
Tone: {tone}
Length: {length}

Generate a single, powerful affirmation that is:
- Personal and specific to their situation
- Positive and empowering
- Believable and achievable
- In present tense using "I" statements
- Tailored to their specific problem description

Return only the affirmation text, no additional formatting.
"""


def _is_string_list(value):
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def decode_affirmations(text):
    """
    Pull the affirmation set out of raw model output.

    The model tends to wrap its JSON in prose or code fences, so the largest
    brace-delimited span is parsed. Returns None when there is no span, the
    span is not valid JSON, or any of the three lists is missing or holds
    something other than strings. List lengths are not checked.
    """
    if not text:
        return None

    match = _JSON_SPAN.search(text)
    if not match:
        return None

    try:
        parsed = json.loads(match.group(0))
    except (ValueError, RecursionError):
        return None

    if not isinstance(parsed, dict):
        return None
    if not all(_is_string_list(parsed.get(key)) for key in AFFIRMATION_KEYS):
        return None
    return parsed


def fallback_affirmations():
    return copy.deepcopy(FALLBACK_AFFIRMATIONS)


@dataclass
class GenerationResult:
    content: Any
    failure: Optional[str] = None

    @property
    def is_fallback(self):
        return self.failure is not None


class AffirmationGenerator:
    """Asks the model for affirmations; always hands back displayable content."""

    def __init__(self, model):
        self.model = model

    def _complete(self, prompt):
        response = self.model.generate_content(prompt)
        return response.text

    def generate_affirmations(self, category, title, description, severity):
        prompt = build_affirmations_prompt(category, title, description, severity)
        logger.info("Requesting affirmation set (category=%s, severity=%s)", category, severity)

        try:
            text = self._complete(prompt)
        except Exception as e:
            logger.warning("Affirmation model call failed, using fallback set: %s", e)
            return GenerationResult(fallback_affirmations(), NETWORK_FAILURE)

        logger.debug("Raw model response: %s", text)

        decoded = decode_affirmations(text)
        if decoded is None:
            logger.warning("Could not decode affirmation set from model output, using fallback set")
            return GenerationResult(fallback_affirmations(), DECODE_FAILURE)
        return GenerationResult(decoded)

    def generate_personalized_affirmation(self, category, description, preferences=None):
        preferences = preferences or {}
        prompt = build_personalized_prompt(
            category,
            description,
            tone=preferences.get("tone") or "encouraging",
            length=preferences.get("length") or "medium",
        )

        try:
            text = self._complete(prompt)
        except Exception as e:
            logger.warning("Personalized affirmation call failed, using fallback: %s", e)
            return GenerationResult(FALLBACK_AFFIRMATION, NETWORK_FAILURE)

        affirmation = text.strip() if isinstance(text, str) else ""
        if not affirmation:
            logger.warning("Model returned an empty affirmation, using fallback")
            return GenerationResult(FALLBACK_AFFIRMATION, DECODE_FAILURE)
        return GenerationResult(affirmation)
