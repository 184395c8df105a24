from __future__ import annotations

import asyncio
import json
import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence, Tuple

from openai import APIConnectionError, APIError, AsyncOpenAI, AuthenticationError, RateLimitError

from ..core.config import get_settings
from ..core.exceptions import GenerationMalformed, GenerationUnavailable
from ..models.constants import (
    COGNITIVE_PSYCHOMETRIC_TYPES,
    LIKERT_PSYCHOMETRIC_TYPES,
    PSYCHOMETRIC_TYPES,
)

logger = logging.getLogger(__name__)

_PSYCHOMETRIC_FOCUS: Dict[str, str] = {
    "mbti": "personality preferences (Extraversion/Introversion, Sensing/Intuition, Thinking/Feeling, Judging/Perceiving)",
    "disc": "Dominance, Influence, Steadiness and Conscientiousness behavioral styles",
    "big_five": "Openness, Conscientiousness, Extraversion, Agreeableness and Neuroticism",
    "emotional_intelligence": "self-awareness, self-regulation, motivation, empathy and social skills",
    "rorschach": "perception and interpretation patterns and emotional responses",
    "mmpi": "personality structure and psychological tendencies",
    "cattell_16pf": "warmth, reasoning, emotional stability, dominance and the other 16PF factors",
    "hogan": "reputation, values and challenges in professional settings",
    "caliper": "motivations, behaviors and potential in work environments",
    "wonderlic": "problem-solving, logical reasoning and learning aptitude",
}

_LANGUAGE_NAMES = {"en": "English", "es": "Spanish"}


@lru_cache(maxsize=1)
def _get_client() -> AsyncOpenAI:
    settings = get_settings()
    if not settings.openai_api_key:
        raise GenerationUnavailable("OpenAI API key not configured. Please set OPENAI_API_KEY in your environment variables.")
    return AsyncOpenAI(api_key=settings.openai_api_key, base_url=settings.openai_base_url)


def _objective_format(count: int) -> str:
    return f"""Format each question as JSON:
{{
  "question": "question text",
  "options": {{"A": "option A", "B": "option B", "C": "option C", "D": "option D"}},
  "correct": "A/B/C/D"
}}

Spread the correct answer evenly across A, B, C and D.
Return ONLY a JSON array of {count} questions."""


def build_generation_prompt(
    assessment_type: str,
    topic: Optional[str],
    psychometric_type: Optional[str],
    language: str,
    count: int,
) -> Tuple[str, str]:
    language_name = _LANGUAGE_NAMES.get(language, "English")

    if assessment_type == "hard_skills":
        system_prompt = f"You are an expert technical assessment creator. Write every question in {language_name}."
        user_prompt = f"""Create {count} multiple-choice technical questions to evaluate: {topic}.
Each question must test practical knowledge, have 4 distinct options and exactly one correct answer.
Use progressive difficulty.

{_objective_format(count)}"""
    elif assessment_type == "soft_skills":
        system_prompt = f"You are an expert in soft skills assessment. Write every question in {language_name}."
        user_prompt = f"""Create {count} scenario-based multiple-choice questions to evaluate: {topic}.
Each question presents a realistic workplace scenario with 4 distinct approaches, one of which is the best
according to professional practice.

{_objective_format(count)}"""
    elif psychometric_type in COGNITIVE_PSYCHOMETRIC_TYPES:
        system_prompt = f"You are an expert psychometric test designer. Write every question in {language_name}."
        user_prompt = f"""Create {count} cognitive ability questions for a {PSYCHOMETRIC_TYPES[psychometric_type]} assessment.
Focus on: {_PSYCHOMETRIC_FOCUS[psychometric_type]}.
Each question has 4 distinct options and exactly one correct answer.

{_objective_format(count)}"""
    elif psychometric_type in LIKERT_PSYCHOMETRIC_TYPES:
        system_prompt = f"You are an expert psychometric test designer. Write every statement in {language_name}."
        user_prompt = f"""Create {count} first-person statements for a {PSYCHOMETRIC_TYPES[psychometric_type]} assessment.
Focus on: {_PSYCHOMETRIC_FOCUS[psychometric_type]}.
Candidates rate each statement on a 5-point agreement scale, so there is no correct answer.

Format each statement as JSON: {{"question": "statement text"}}
Return ONLY a JSON array of {count} statements."""
    else:
        raise ValueError(f"Unsupported assessment type: {assessment_type}/{psychometric_type}")

    return system_prompt, user_prompt


def _strip_code_fences(raw: str) -> str:
    raw = raw.strip()
    if raw.startswith("```json"):
        raw = raw[7:]
    elif raw.startswith("```"):
        raw = raw[3:]
    if raw.endswith("```"):
        raw = raw[:-3]
    return raw.strip()


def parse_question_array(raw: str) -> List[Dict[str, Any]]:
    """Parse the upstream payload into a list of question objects."""
    raw = _strip_code_fences(raw)
    parsed: Any = None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        # Try to extract JSON array from surrounding text
        if "[" in raw and "]" in raw:
            try:
                parsed = json.loads(raw[raw.find("[") : raw.rfind("]") + 1])
            except json.JSONDecodeError:
                parsed = None

    if isinstance(parsed, dict) and isinstance(parsed.get("questions"), list):
        parsed = parsed["questions"]
    if not isinstance(parsed, list):
        raise GenerationMalformed("Failed to parse AI-generated questions")
    return parsed


async def _chat_completion(system_prompt: str, user_prompt: str, temperature: float = 0.7) -> str:
    settings = get_settings()
    client = _get_client()
    max_retries = max(1, settings.generation_max_retries)

    for attempt in range(max_retries):
        try:
            response = await client.chat.completions.create(
                model=settings.openai_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
            )
            break
        except AuthenticationError as exc:
            logger.error(f"OpenAI API authentication failed: {exc}")
            raise GenerationUnavailable("AI service authentication failed. Please contact the administrator.") from exc
        except (RateLimitError, APIConnectionError, APIError) as exc:
            if attempt < max_retries - 1:
                logger.warning(f"OpenAI API call failed (attempt {attempt + 1}/{max_retries}): {exc}")
                # Wait before retry (exponential backoff)
                await asyncio.sleep(2 ** attempt)
                continue
            logger.error(f"OpenAI API call failed after {max_retries} attempts: {exc}")
            raise GenerationUnavailable(f"AI service unavailable after {max_retries} attempts") from exc

    content = response.choices[0].message.content if response.choices else None
    if not content or not content.strip():
        logger.warning("OpenAI API returned empty response")
        raise GenerationMalformed("AI service returned an empty response")
    return content.strip()


async def generate_question_items(
    assessment_type: str,
    topic: Optional[str],
    psychometric_type: Optional[str],
    language: str,
    count: int,
) -> List[Dict[str, Any]]:
    """Ask the upstream model for ``count`` raw question items."""
    system_prompt, user_prompt = build_generation_prompt(assessment_type, topic, psychometric_type, language, count)
    logger.info(f"[Generator] Requesting {count} questions ({assessment_type}/{psychometric_type or topic})")
    raw = await _chat_completion(system_prompt, user_prompt)
    return parse_question_array(raw)


async def generate_personality_analysis(
    psychometric_type: Optional[str],
    language: str,
    answered: Sequence[Tuple[str, str]],
) -> str:
    """Write a recruiter-facing personality narrative from (statement, chosen label) pairs."""
    test_name = PSYCHOMETRIC_TYPES.get(psychometric_type or "", "PSYCHOMETRIC")
    responses_text = "\n\n".join(
        f"{index}. {statement}\n   Answer: {label}" for index, (statement, label) in enumerate(answered, start=1)
    )

    if language == "es":
        system_prompt = (
            f"Eres un psicólogo experto especializado en evaluaciones {test_name}. Analiza las respuestas del "
            "candidato y proporciona un perfil de personalidad profesional y perspicaz."
        )
        user_prompt = f"""Basado en estas respuestas de evaluación {test_name}, proporciona un análisis de personalidad completo (200-300 palabras):

{responses_text}

Enfócate en rasgos clave, fortalezas y áreas de desarrollo, estilo de trabajo y recomendaciones de ajuste al rol.
Escribe en un tono profesional y constructivo apropiado para reclutamiento."""
    else:
        system_prompt = (
            f"You are an expert psychologist specialized in {test_name} assessments. Analyze the candidate's "
            "responses and provide a professional, insightful personality profile."
        )
        user_prompt = f"""Based on these {test_name} assessment responses, provide a comprehensive personality analysis (200-300 words):

{responses_text}

Focus on key traits, strengths and areas for development, work style, and team fit and role suitability.
Write in a professional, constructive tone suitable for recruitment purposes."""

    return await _chat_completion(system_prompt, user_prompt)
