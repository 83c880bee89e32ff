"""Prompt text for the chat agent; the .txt files ship inside this package."""

import os
from datetime import date
from typing import Optional

PROMPTS_DIR = os.path.dirname(os.path.abspath(__file__))


def load_prompt(filename: str) -> str:
    """Load a prompt file and fail fast if missing."""
    prompt_path = os.path.join(PROMPTS_DIR, filename)
    if not os.path.exists(prompt_path):
        raise FileNotFoundError(f"Prompt file not found: {prompt_path}")
    with open(prompt_path, "r", encoding="utf-8") as f:
        return f.read().strip()


def formatted_date(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"{today.strftime('%A')}, {today.strftime('%B')} {today.day}, {today.year}"


def get_system_prompt(today: Optional[date] = None) -> str:
    return load_prompt("system_prompt.txt").format(today=formatted_date(today))


def get_report_prompt() -> str:
    return load_prompt("report_prompt.txt")


def get_title_prompt() -> str:
    return load_prompt("title_prompt.txt")
