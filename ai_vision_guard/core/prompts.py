"""
Fixed prompts sent to the model.
"""

from typing import List

SUBJECTS_PROMPT = (
    "Analyze the objects in the image and list every significant physical object "
    "(not people, animals or other living beings). For each object name the most "
    "likely materials it is made of, given its purpose and required strength.\n"
    "Answer as a list in the format: object: material, material.\n"
    "If nothing is found, answer: \"No objects found: No materials found\". Be brief."
)


def subjects_prompt() -> str:
    """Prompt asking for objects and materials visible in an image."""
    return SUBJECTS_PROMPT


def materials_prompt(subjects: List[str]) -> str:
    """Prompt asking which materials the named objects are made of.

    Raises:
        ValueError: If no subject names are given
    """
    names = [s.strip() for s in subjects if s and s.strip()]
    if not names:
        raise ValueError("subjects cannot be empty")

    subjects_list = ", ".join(names)
    return (
        f"Determine which materials the following items are made of: {subjects_list}.\n"
        "For each item answer strictly in the format: Item name: material1, material2, material3\n"
        "For example:\n"
        "Notebook: paper, cardboard, glue\n"
        "Pen: plastic, metal, ink\n"
        f"Items to analyze:\n{subjects_list}\n"
        "Be brief."
    )
