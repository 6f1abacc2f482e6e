"""
Generation service.

Runs one request through its whole lifecycle:
Admission -> Compose -> Generate -> Account -> Record

Admission failures leave no trace. Once a record has been begun, it is
always completed, whether the request succeeds, fails or is cancelled.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

from ai_gen_broker.config.loader import VALID_MODES, BrokerConfig
from ai_gen_broker.sdk.inference_client import InferenceClient, is_valid_credential
from ai_gen_broker.storage.models import ContextFile, InteractionRecord, Project, ProjectFile
from ai_gen_broker.storage.repository import (
    InteractionRepository,
    ProjectRepository,
    UserRepository,
    initialize_schema,
)

from .errors import (
    AccessDenied,
    BrokerError,
    GenerationFailed,
    InteractionStateError,
    InvalidRequest,
    NotFound,
    QuotaError,
)
from .local_generator import LocalHeuristicGenerator
from .mock_generator import MockGenerator
from .orchestrator import ProviderFallbackOrchestrator
from .prompt import compose
from .quota import QuotaLedger, QuotaUsage, UserLocks
from .token_counter import TokenUsage, estimate_tokens

logger = logging.getLogger(__name__)

CANCELLED_REASON = "Request cancelled"


@dataclass(frozen=True)
class GenerationResult:
    """Successful outcome of `GenerationService.generate`."""
    response: str
    mode: str
    model: str
    strategy: str
    tokens_used: TokenUsage
    response_time_ms: int
    interaction_id: str
    context_files: List[ContextFile] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "mode": self.mode,
            "model": self.model,
            "strategy": self.strategy,
            "tokensUsed": self.tokens_used.to_dict(),
            "responseTimeMs": self.response_time_ms,
            "contextFiles": [f.to_dict() for f in self.context_files],
            "interactionId": self.interaction_id,
        }


class GenerationService:
    """Entry point invoked by the HTTP and CLI boundaries."""

    def __init__(
        self,
        ledger: QuotaLedger,
        recorder: InteractionRepository,
        projects: ProjectRepository,
        orchestrator: ProviderFallbackOrchestrator,
        config: Optional[BrokerConfig] = None,
        locks: Optional[UserLocks] = None,
        timer: Callable[[], float] = time.monotonic,
    ):
        """Initialize the service.

        Args:
            ledger: Quota owner; the service never touches counters directly
            recorder: Interaction history
            projects: Project/file store used for context
            orchestrator: Fallback chain
            config: Broker configuration (defaults if None)
            locks: Per-user locks, used when quota.serialize_per_user is on
            timer: Monotonic clock in seconds for response timing
        """
        self.ledger = ledger
        self.recorder = recorder
        self.projects = projects
        self.orchestrator = orchestrator
        self.config = config or BrokerConfig()
        self.locks = locks or UserLocks()
        self.timer = timer

    def validate_request(self, prompt: str, mode: str) -> None:
        """Reject malformed requests before any quota or storage work.

        Raises:
            InvalidRequest: On an empty or oversized prompt or unknown mode
        """
        if not prompt or not prompt.strip():
            raise InvalidRequest("Prompt is required")
        max_chars = self.config.context.max_prompt_chars
        if len(prompt) > max_chars:
            raise InvalidRequest(f"Prompt must be between 1 and {max_chars} characters")
        if mode not in VALID_MODES:
            raise InvalidRequest(f"Mode must be one of: {', '.join(VALID_MODES)}")

    def generate(
        self,
        user_id: str,
        prompt: str,
        mode: str,
        project_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        """Generate or explain code for a user.

        Args:
            user_id: Authenticated user
            prompt: Raw user request
            mode: "generate" or "explain"
            project_id: Optional project whose files become prompt context
            metadata: Optional request metadata stored with the record

        Returns:
            GenerationResult

        Raises:
            InvalidRequest: Request failed validation
            QuotaExceeded: Daily budget already spent
            WouldExceedQuota: Estimated cost is larger than what is left
            NotFound: Unknown user or project
            AccessDenied: Private project owned by someone else
            GenerationFailed: Anything else after the record was begun
        """
        self.validate_request(prompt, mode)
        with self._serialized(user_id):
            return self._generate(user_id, prompt, mode, project_id, metadata)

    @contextmanager
    def _serialized(self, user_id: str) -> Iterator[None]:
        if self.config.quota.serialize_per_user:
            with self.locks.hold(user_id):
                yield
        else:
            yield

    def _generate(
        self,
        user_id: str,
        prompt: str,
        mode: str,
        project_id: Optional[str],
        metadata: Optional[Dict[str, Any]],
    ) -> GenerationResult:
        estimated = estimate_tokens(prompt)
        try:
            self.ledger.check_admission(user_id)
            self.ledger.reserve(user_id, estimated)
        except QuotaError as exc:
            logger.info("Admission rejected for user %s: %s", user_id, exc.code)
            raise

        started = self.timer()
        interaction_id = self.recorder.begin(
            user_id, project_id, prompt, mode,
            self.orchestrator.config.primary_model, metadata,
        )
        committed = False
        try:
            files = self._load_context(project_id, user_id)
            full_prompt = compose(prompt, mode, files)
            outcome = self.orchestrator.generate(full_prompt, mode, user_prompt=prompt)
            response = outcome.text[:self.config.context.max_response_chars]

            tokens = TokenUsage(
                input_tokens=estimate_tokens(full_prompt),
                output_tokens=estimate_tokens(response),
            )
            self.ledger.commit(user_id, tokens.total_tokens)
            committed = True

            elapsed_ms = self._elapsed_ms(started)
            context_files = [ContextFile(filename=f.filename, size=f.size) for f in files]
            self.recorder.complete_success(
                interaction_id,
                response=response,
                model_used=outcome.model,
                tokens_used=tokens,
                response_time_ms=elapsed_ms,
                context_files=context_files,
                strategy=outcome.strategy.value,
            )
        except (AccessDenied, NotFound) as exc:
            self._fail(interaction_id, user_id, estimated, exc.message, started, committed)
            raise
        except Exception as exc:
            logger.exception("Generation failed for interaction %s", interaction_id)
            self._fail(
                interaction_id, user_id, estimated,
                f"AI generation failed: {type(exc).__name__}", started, committed,
            )
            raise GenerationFailed(interaction_id=interaction_id) from exc
        except BaseException:
            self._fail(interaction_id, user_id, estimated, CANCELLED_REASON, started, committed)
            raise

        return GenerationResult(
            response=response,
            mode=mode,
            model=outcome.model,
            strategy=outcome.strategy.value,
            tokens_used=tokens,
            response_time_ms=elapsed_ms,
            context_files=context_files,
            interaction_id=interaction_id,
        )

    def _fail(
        self,
        interaction_id: str,
        user_id: str,
        estimated: int,
        reason: str,
        started: float,
        committed: bool,
    ) -> None:
        if self.config.quota.charge_failed_requests and not committed:
            try:
                self.ledger.commit(user_id, estimated)
            except BrokerError as exc:
                logger.error("Could not charge failed request for user %s: %s", user_id, exc.message)
        try:
            self.recorder.complete_failure(interaction_id, reason, self._elapsed_ms(started))
        except InteractionStateError:
            logger.warning("Interaction %s already completed", interaction_id)

    def _elapsed_ms(self, started: float) -> int:
        return int(round((self.timer() - started) * 1000))

    def _check_project_access(self, project_id: str, user_id: str) -> Project:
        project = self.projects.get_project(project_id)
        if project is None:
            raise NotFound("Project not found")
        if project.owner_id != user_id and not project.is_public:
            raise AccessDenied("Access denied to project")
        return project

    def _load_context(self, project_id: Optional[str], user_id: str) -> List[ProjectFile]:
        if not project_id:
            return []
        self._check_project_access(project_id, user_id)
        return self.projects.get_files_for_context(project_id, self.config.context.max_tokens)

    def get_usage(self, user_id: str) -> QuotaUsage:
        return self.ledger.get_usage(user_id)

    def can_request(self, user_id: str, prompt: Optional[str] = None) -> Dict[str, Any]:
        """Dry-run admission for a user and, optionally, a prompt.

        Returns:
            Dictionary with `allowed`, `reason` (None when allowed),
            `estimatedTokens` and the usage snapshot
        """
        estimated = estimate_tokens(prompt or "")
        usage = self.ledger.get_usage(user_id)
        reason = None
        if usage.exceeded:
            reason = "Daily token limit exceeded"
        elif estimated > usage.remaining:
            reason = "Request would exceed daily token limit"
        return {
            "allowed": reason is None,
            "reason": reason,
            "estimatedTokens": estimated,
            "usage": usage.to_dict(),
        }

    def history(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        project_id: Optional[str] = None,
        mode: Optional[str] = None,
        since_days: Optional[int] = 30,
    ) -> Dict[str, Any]:
        if mode is not None and mode not in VALID_MODES:
            raise InvalidRequest(f"Mode must be one of: {', '.join(VALID_MODES)}")
        if since_days is not None and since_days < 0:
            raise InvalidRequest("since_days cannot be negative")
        return self.recorder.list_for_user(
            user_id, page=page, limit=limit, project_id=project_id, mode=mode, since_days=since_days,
        )

    def get_interaction(self, interaction_id: str, user_id: str) -> InteractionRecord:
        return self.recorder.get_by_id(interaction_id, user_id)

    def delete_interaction(self, interaction_id: str, user_id: str) -> None:
        self.recorder.delete_by_id(interaction_id, user_id)
        logger.info("User %s deleted interaction %s", user_id, interaction_id)

    def stats(self, user_id: str, since_days: int = 30) -> Dict[str, Any]:
        if since_days < 1:
            raise InvalidRequest("since_days must be >= 1")
        return self.recorder.stats_for_user(user_id, since_days=since_days)

    def project_history(self, project_id: str, user_id: str, limit: int = 50) -> List[InteractionRecord]:
        """Interactions of a project the user can see.

        Raises:
            NotFound: Unknown project
            AccessDenied: Private project owned by someone else
        """
        self._check_project_access(project_id, user_id)
        return self.recorder.list_for_project(project_id, limit=limit)


def create_generation_service(config: Optional[BrokerConfig] = None) -> GenerationService:
    """Wire a service from configuration.

    Initializes the database schema and builds the remote client only when
    the environment holds a usable credential.
    """
    config = config or BrokerConfig()
    db_path = config.storage.db_path
    initialize_schema(db_path)

    provider_config = config.provider
    api_key = provider_config.resolve_api_key()
    provider = None
    if is_valid_credential(api_key, provider_config.credential_prefix, provider_config.credential_min_length):
        provider = InferenceClient(api_key, provider_config.base_url, provider_config.timeout_seconds)
    else:
        logger.warning(
            "%s is missing or malformed; remote models disabled", provider_config.api_key_env,
        )

    orchestrator = ProviderFallbackOrchestrator(
        provider,
        provider_config,
        local_generator=LocalHeuristicGenerator(
            config.local.min_delay_seconds, config.local.max_delay_seconds,
        ),
        mock_generator=MockGenerator(),
        api_key=api_key or "",
    )
    ledger = QuotaLedger(
        UserRepository(db_path),
        tiers=config.quota.tiers,
        default_role=config.quota.default_role,
    )
    return GenerationService(
        ledger=ledger,
        recorder=InteractionRepository(db_path),
        projects=ProjectRepository(db_path),
        orchestrator=orchestrator,
        config=config,
    )
