"""Selection of the generation strategy for a request."""

from __future__ import annotations

from typing import Iterable, List, Optional

from .errors import ConfigurationError
from .types import (
    AvatarPairStrategy,
    AvatarSoloStrategy,
    GenerationRequest,
    GenerationStrategy,
    SpeakerProfile,
    TemplateInfo,
    TemplateStrategy,
)

SCRIPT_VARIABLE = "script"


class StrategySelector:
    """Resolves template vs. avatar-pair vs. avatar-solo generation.

    Selection runs once per submission attempt. The orchestrator calls it a
    second time with ``exclude_template=True`` when a provider rejects a
    template submission.
    """

    def resolve(
        self,
        request: GenerationRequest,
        available_templates: Iterable[TemplateInfo] = (),
        *,
        exclude_template: bool = False,
    ) -> GenerationStrategy:
        if request.template_id and not exclude_template:
            template = self._find_template(request.template_id, available_templates)
            if template is not None:
                return TemplateStrategy(
                    template_id=template.template_id,
                    variable_bindings=self._bind_variables(request, template),
                )

        configured = self.configured_speakers(request)
        if len(configured) == 1:
            return AvatarSoloStrategy(speaker=configured[0])
        if len(configured) >= 2:
            return AvatarPairStrategy(speaker_a=configured[0], speaker_b=configured[1])

        if request.template_id and not exclude_template:
            raise ConfigurationError(
                f"Template {request.template_id} is not available and no speaker avatar/voice is configured."
            )
        raise ConfigurationError("No speaker avatar/voice pair is configured for this request.")

    @staticmethod
    def configured_speakers(request: GenerationRequest) -> List[SpeakerProfile]:
        """Configured speakers ordered by first appearance in the dialogue."""
        ordered: List[SpeakerProfile] = []
        for speaker_id in request.speaker_order():
            profile = request.speaker(speaker_id)
            if profile is not None and profile.is_configured:
                ordered.append(profile)
        # Profiles for speakers that never talk still count, after the others.
        for profile in request.speakers:
            if profile.is_configured and profile not in ordered:
                ordered.append(profile)
        return ordered

    @staticmethod
    def _find_template(template_id: str, templates: Iterable[TemplateInfo]) -> Optional[TemplateInfo]:
        for template in templates:
            if str(template.template_id) == str(template_id):
                return template
        return None

    @staticmethod
    def _bind_variables(request: GenerationRequest, template: TemplateInfo) -> tuple[tuple[str, str], ...]:
        supplied = dict(request.template_variables)
        names = list(template.variables) or [SCRIPT_VARIABLE]
        bindings = []
        for name in names:
            value = supplied.get(name)
            if value is None:
                value = request.script()
            bindings.append((name, value))
        # Keep explicitly supplied values the template listing did not mention.
        for name, value in request.template_variables:
            if name not in names:
                bindings.append((name, value))
        return tuple(bindings)


__all__ = ["SCRIPT_VARIABLE", "StrategySelector"]
