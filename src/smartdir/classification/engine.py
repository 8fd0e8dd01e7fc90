"""Classification engine built on top of DSPy.

The engine asks a language model to pick a category and suggest tags. Whenever
no model is configured, a call fails, or the answer is unusable, it falls back
to the extension rules in :mod:`smartdir.classification.rules`; callers never
see an error.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, List, Optional

import dspy

from smartdir.config.models import LLMSettings

from .models import Category
from .rules import category_for_extension, fallback_tags, unique_tags

LOGGER = logging.getLogger(__name__)

_CATEGORY_CHOICES = ", ".join(category.value for category in Category)

Program = Callable[..., Any]


class ClassificationEngine:
    """Classify and tag files with DSPy, degrading to extension rules."""

    def __init__(
        self,
        settings: Optional[LLMSettings] = None,
        *,
        classifier: Optional[Program] = None,
        tagger: Optional[Program] = None,
    ) -> None:
        """Initialise the engine.

        Args:
            settings: LLM configuration; an unconfigured provider disables the model.
            classifier: Pre-built program returning an object with a ``category``
                attribute; overrides the DSPy program.
            tagger: Pre-built program returning an object with a ``tags`` attribute.
        """
        self._settings = settings or LLMSettings()
        self._lm: Any = None
        self._classifier = classifier
        self._tagger = tagger

        if classifier is None and tagger is None:
            if self._is_configured():
                try:
                    self._lm = self._build_language_model()
                    self._classifier, self._tagger = self._build_programs()
                except Exception as exc:
                    LOGGER.warning("Unable to configure the language model (%s); using extension rules.", exc)
                    self._classifier = self._tagger = None
            else:
                LOGGER.info("No language model configured; using extension rules for classification.")

    @property
    def uses_model(self) -> bool:
        return self._classifier is not None

    def classify(self, path: Path) -> Category:
        """Return the category for ``path``; never raises."""
        path = Path(path)
        if self._classifier is None:
            return category_for_extension(path)
        try:
            response = self._run(self._classifier, filename=path.name, extension=path.suffix.lower())
            answer = getattr(response, "category", None)
            category = Category.parse(answer)
            if category is None:
                raise ValueError(f"invalid category: {answer!r}")
            return category
        except Exception as exc:
            LOGGER.warning("Classification degraded for %s: %s. Using fallback classification.", path, exc)
            return category_for_extension(path)

    def generate_tags(self, path: Path, category: Category) -> List[str]:
        """Return 3-5 lower-case tags for ``path``; falls back to filename tokens."""
        path = Path(path)
        if self._tagger is None:
            return fallback_tags(path)
        try:
            response = self._run(
                self._tagger,
                filename=path.name,
                extension=path.suffix.lower(),
                category=Category(category).value,
            )
            tags = getattr(response, "tags", None)
            if isinstance(tags, str):
                tags = tags.split(",")
            if not isinstance(tags, list):
                raise ValueError(f"unexpected tags payload: {tags!r}")
            cleaned = unique_tags(tag for tag in tags if isinstance(tag, str))
            if not cleaned:
                raise ValueError("no tags returned")
            return cleaned
        except Exception as exc:
            LOGGER.warning("Tag generation degraded for %s: %s. Using filename tags.", path, exc)
            return fallback_tags(path)

    # ------------------------------------------------------------------ #
    # DSPy wiring                                                        #
    # ------------------------------------------------------------------ #

    def _run(self, program: Program, **inputs: Any) -> Any:
        if self._lm is None:
            return program(**inputs)
        with dspy.context(lm=self._lm):
            return program(**inputs)

    def _is_configured(self) -> bool:
        defaults = LLMSettings()
        return any(
            [
                self._settings.api_base_url,
                self._settings.api_key,
                self._settings.provider != defaults.provider,
                self._settings.model != defaults.model,
            ]
        )

    def _build_language_model(self) -> Any:
        model = self._settings.model
        provider = self._settings.provider
        if provider and provider != "local" and "/" not in model:
            model = f"{provider}/{model}"

        lm_kwargs: dict[str, Any] = {
            "model": model,
            "temperature": self._settings.temperature,
            "max_tokens": self._settings.max_tokens,
        }
        if self._settings.api_base_url:
            lm_kwargs["api_base"] = self._settings.api_base_url
        if self._settings.api_key is not None:
            lm_kwargs["api_key"] = self._settings.api_key
        return dspy.LM(**lm_kwargs)

    @staticmethod
    def _build_programs() -> tuple[Program, Program]:
        """Construct the DSPy programs used for categories and tags."""

        class FileCategorySignature(dspy.Signature):  # type: ignore[misc]
            """Categorize a file from its filename and extension.

            Answer with exactly one of: images, documents, videos, audio, code, archives, other.
            Use other for anything that does not clearly fit.
            """

            filename: str = dspy.InputField()
            extension: str = dspy.InputField()
            category: str = dspy.OutputField(desc=f"one of: {_CATEGORY_CHOICES}")

        class FileTagsSignature(dspy.Signature):  # type: ignore[misc]
            """Generate 3-5 relevant lower-case tags for a file."""

            filename: str = dspy.InputField()
            extension: str = dspy.InputField()
            category: str = dspy.InputField()
            tags: list[str] = dspy.OutputField()

        return dspy.Predict(FileCategorySignature), dspy.Predict(FileTagsSignature)


__all__ = ["ClassificationEngine"]
