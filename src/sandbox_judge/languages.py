"""Per-language execution environments.

Each supported language maps to exactly one externally provisioned
environment: an interpreter on the host for the process runtime, a prebuilt
image for the docker runtime. Nothing is compiled here.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING

from sandbox_judge.exceptions import UnsupportedLanguageError
from sandbox_judge.models import Language

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True)
class LanguageRuntime:
    """How a staged program of one language is launched."""

    language: Language
    filename: str
    command: tuple[str, ...]
    image: str
    # RLIMIT_AS = memory limit * multiplier; None = address space not capped
    # (V8 reserves far more virtual memory than it ever touches)
    address_space_multiplier: int | None = 2

    @property
    def interpreter(self) -> str:
        return self.command[0]

    def argv(self, workdir: str) -> list[str]:
        """Command line with the staged filename resolved against workdir."""
        return [*self.command, f"{workdir}/{self.filename}"]


LANGUAGE_RUNTIMES: Mapping[Language, LanguageRuntime] = MappingProxyType(
    {
        Language.PYTHON: LanguageRuntime(
            language=Language.PYTHON,
            filename="solution.py",
            # -I: isolated mode, ignores PYTHON* env vars and user site-packages
            command=("python3", "-I"),
            image="python:3.12-alpine",
        ),
        Language.JAVASCRIPT: LanguageRuntime(
            language=Language.JAVASCRIPT,
            filename="solution.js",
            command=("node",),
            image="node:22-alpine",
            address_space_multiplier=None,
        ),
    }
)


def get_language_runtime(language: Language | str) -> LanguageRuntime:
    """Look up the runtime for a language.

    Raises:
        UnsupportedLanguageError: No environment exists for the language
    """
    try:
        return LANGUAGE_RUNTIMES[Language(language)]
    except (ValueError, KeyError):
        raise UnsupportedLanguageError(
            f"Unsupported language: {language}",
            context={"language": str(language), "supported": [lang.value for lang in LANGUAGE_RUNTIMES]},
        ) from None
