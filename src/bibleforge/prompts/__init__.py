"""Prompt compiler and template loading."""

from bibleforge.prompts.compiler import CompiledPrompt, PromptCompileError, PromptCompiler
from bibleforge.prompts.loader import (
    PromptLoader,
    PromptTemplate,
    TemplateNotFoundError,
    TemplateParseError,
)

__all__ = [
    "CompiledPrompt",
    "PromptCompileError",
    "PromptCompiler",
    "PromptLoader",
    "PromptTemplate",
    "TemplateNotFoundError",
    "TemplateParseError",
]
