# backend/prompts/__init__.py
"""
Resume Prompts Package

Contains LLM instruction templates for resume analysis, rewriting and chat.
"""

from .resume_prompts import PromptTemplates

__all__ = [
    "PromptTemplates",
]
