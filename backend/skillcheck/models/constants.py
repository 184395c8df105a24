from __future__ import annotations

from typing import Dict, List

ASSESSMENT_TYPES = {"hard_skills", "soft_skills", "psychometric"}

# Every subtype but wonderlic is a personality inventory answered on a Likert scale
PSYCHOMETRIC_TYPES: Dict[str, str] = {
    "mbti": "MBTI - Myers-Briggs Type Indicator",
    "disc": "DISC - Behavioral Analysis",
    "big_five": "Big Five - Five Factor Model",
    "emotional_intelligence": "Emotional Intelligence (EQ)",
    "rorschach": "Rorschach - Inkblot Interpretation",
    "mmpi": "MMPI - Multiphasic Personality Inventory",
    "cattell_16pf": "16PF - Sixteen Personality Factors",
    "hogan": "Hogan - Personality Inventory",
    "caliper": "Caliper - Personality Profile",
    "wonderlic": "Wonderlic - Cognitive Ability Test",
}
COGNITIVE_PSYCHOMETRIC_TYPES = {"wonderlic"}
LIKERT_PSYCHOMETRIC_TYPES = set(PSYCHOMETRIC_TYPES) - COGNITIVE_PSYCHOMETRIC_TYPES

OBJECTIVE_LABELS: List[str] = ["A", "B", "C", "D"]
LIKERT_OPTION_LABELS: List[str] = ["A", "B", "C", "D", "E"]
LIKERT_SENTINEL = "LIKERT"

SUPPORTED_LANGUAGES = {"en", "es"}

LIKERT_SCALES: Dict[str, List[str]] = {
    "en": ["Strongly disagree", "Disagree", "Neutral", "Agree", "Strongly agree"],
    "es": [
        "Totalmente en desacuerdo",
        "En desacuerdo",
        "Neutral",
        "De acuerdo",
        "Totalmente de acuerdo",
    ],
}


def is_likert_subtype(assessment_type: str, psychometric_type: str | None) -> bool:
    return assessment_type == "psychometric" and psychometric_type in LIKERT_PSYCHOMETRIC_TYPES


def likert_options(language: str) -> Dict[str, str]:
    scale = LIKERT_SCALES.get(language, LIKERT_SCALES["en"])
    return dict(zip(LIKERT_OPTION_LABELS, scale))
