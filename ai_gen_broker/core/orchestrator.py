"""
Provider fallback orchestration.

Strategies run strictly in order, one at a time:
1. Primary remote model (only with a usable credential)
2. Fallback remote models, in configured order
3. Local heuristic templates
4. Mock templates

The first non-empty answer wins. Remote and local failures are logged and
swallowed; only a failure of the mock stage propagates.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from ai_gen_broker.config.loader import ProviderConfig
from ai_gen_broker.sdk.inference_client import InferenceClient, is_valid_credential

from .classifier import CallingConvention, calling_convention_for
from .decoding import decode_chat, decode_completion
from .errors import ProviderAttemptFailed
from .local_generator import LocalHeuristicGenerator
from .mock_generator import MockGenerator

logger = logging.getLogger(__name__)

LOCAL_HEURISTIC_MODEL = "local-heuristic"
MOCK_MODEL = "mock"


class Strategy(Enum):
    """Stage of the fallback chain."""
    PRIMARY = "primary"
    FALLBACK = "fallback"
    LOCAL_HEURISTIC = "local-heuristic"
    MOCK = "mock"


@dataclass(frozen=True)
class AttemptDescriptor:
    """Which strategy and model produced (or tried to produce) an answer."""
    strategy: Strategy
    model_id: str
    calling_convention: CallingConvention


@dataclass(frozen=True)
class OrchestrationResult:
    text: str
    descriptor: AttemptDescriptor
    attempts: Tuple[AttemptDescriptor, ...]

    @property
    def model(self) -> str:
        return self.descriptor.model_id

    @property
    def strategy(self) -> Strategy:
        return self.descriptor.strategy


class ProviderFallbackOrchestrator:
    """Runs the fallback chain for a single request."""

    def __init__(
        self,
        provider: Optional[InferenceClient],
        provider_config: ProviderConfig,
        local_generator: Optional[LocalHeuristicGenerator] = None,
        mock_generator: Optional[MockGenerator] = None,
        api_key: Optional[str] = None,
    ):
        """Initialize the orchestrator.

        Args:
            provider: Remote client, or None when no provider is configured
            provider_config: Model list and generation parameters
            local_generator: Heuristic stage (default instance if None)
            mock_generator: Final stage (default instance if None)
            api_key: Credential checked before any remote attempt
                (resolved from the environment if None)
        """
        self.provider = provider
        self.config = provider_config
        self.local_generator = local_generator or LocalHeuristicGenerator()
        self.mock_generator = mock_generator or MockGenerator()
        self.api_key = api_key if api_key is not None else provider_config.resolve_api_key()

    def remote_enabled(self) -> bool:
        if self.provider is None:
            return False
        return is_valid_credential(
            self.api_key,
            prefix=self.config.credential_prefix,
            min_length=self.config.credential_min_length,
        )

    def remote_plan(self) -> List[AttemptDescriptor]:
        """Ordered remote attempts; duplicate model ids are tried once."""
        plan = []
        seen = set()
        candidates = [(Strategy.PRIMARY, self.config.primary_model)]
        candidates += [(Strategy.FALLBACK, model_id) for model_id in self.config.fallback_models]
        for strategy, model_id in candidates:
            if model_id in seen:
                continue
            seen.add(model_id)
            plan.append(AttemptDescriptor(strategy, model_id, calling_convention_for(model_id)))
        return plan

    def generate(self, prompt: str, mode: str, user_prompt: Optional[str] = None) -> OrchestrationResult:
        """Produce text for a composed prompt.

        Args:
            prompt: Fully composed prompt sent to remote models
            mode: "generate" or "explain"
            user_prompt: Raw user request used by the local and mock stages
                (falls back to `prompt`)

        Returns:
            OrchestrationResult with non-empty text

        Raises:
            Exception: Whatever the mock stage raised, if it raised
        """
        heuristic_prompt = user_prompt if user_prompt is not None else prompt
        attempts: List[AttemptDescriptor] = []

        if self.remote_enabled():
            for descriptor in self.remote_plan():
                attempts.append(descriptor)
                logger.debug("Trying %s (%s)", descriptor.model_id, descriptor.calling_convention.value)
                try:
                    text = self._dispatch(descriptor, prompt, mode)
                except Exception as exc:
                    logger.warning(
                        "%s attempt with %s failed: %s",
                        descriptor.strategy.value, descriptor.model_id, type(exc).__name__,
                    )
                    continue
                logger.info("Generated with %s (%s)", descriptor.model_id, descriptor.strategy.value)
                return OrchestrationResult(text, descriptor, tuple(attempts))
        else:
            logger.info("No usable provider credential, skipping remote models")

        local = AttemptDescriptor(Strategy.LOCAL_HEURISTIC, LOCAL_HEURISTIC_MODEL, CallingConvention.LOCAL)
        attempts.append(local)
        try:
            text = self.local_generator.generate(heuristic_prompt, mode)
            if text and text.strip():
                return OrchestrationResult(text.strip(), local, tuple(attempts))
            logger.warning("Local heuristic returned empty text")
        except Exception as exc:
            logger.warning("Local heuristic failed: %s", type(exc).__name__)

        mock = AttemptDescriptor(Strategy.MOCK, MOCK_MODEL, CallingConvention.LOCAL)
        attempts.append(mock)
        text = self.mock_generator.generate(heuristic_prompt, mode)
        if not text or not text.strip():
            raise ProviderAttemptFailed("Mock generator returned empty text", MOCK_MODEL)
        logger.info("Fell back to mock generation")
        return OrchestrationResult(text.strip(), mock, tuple(attempts))

    def _dispatch(self, descriptor: AttemptDescriptor, prompt: str, mode: str) -> str:
        model_id = descriptor.model_id
        if descriptor.calling_convention == CallingConvention.CHAT:
            response = self.provider.chat(
                model_id,
                [{"role": "user", "content": prompt}],
                temperature=self.config.chat_temperatures.for_mode(mode),
                max_tokens=self.config.max_output_tokens,
                top_p=self.config.top_p,
            )
            return decode_chat(response, model_id).content

        response = self.provider.complete(
            model_id,
            prompt,
            temperature=self.config.completion_temperatures.for_mode(mode),
            max_tokens=self.config.max_output_tokens,
            top_p=self.config.top_p,
        )
        return decode_completion(response, model_id).text
