"""LLM client: active-provider selection, retry, and model fallback.

Every completion goes through the same path:

1. The active provider is resolved lazily (preferred provider first, then
   the first available one in priority order).
2. Each candidate is called with exponential-backoff retry for rate limits,
   timeouts, and server errors.
3. When the primary's retries are exhausted and the error kind is one the
   fallback config reacts to, the configured ``provider:model`` list is
   walked in order. Specs that already failed and unknown providers are
   skipped, availability is re-checked before each use, and no more than
   ``max_attempts`` fallbacks are actually tried. The fallback callback
   fires on every switch.

The conversation is passed to every candidate unchanged; adapters convert
it to their wire format. A failure observed after the caller asked to abort
is raised as ``Cancelled`` and never triggers fallback.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from agent.config import FallbackConfig
from agent.errors import AllFallbacksExhausted, Cancelled, NoProviderConfigured
from agent.messages import Message
from agent.retry import RetryPolicy, classify_error, retry_async
from agent.usage import UsageTracker
from providers.base import ChatOptions, LLMProvider, ProviderStatus, collect_stream
from providers.registry import ProviderRegistry, parse_model_spec
from tools.base import ToolDefinition

logger = logging.getLogger(__name__)

FallbackCallback = Callable[[str, str, str], None]


class LLMClient:
    """Provider-agnostic chat client.

    Args:
        registry: Source of provider instances.
        fallback: Fallback settings (defaults to ``FallbackConfig()``).
        retry_policy: Backoff settings applied to every candidate.
        model: Model override for the primary provider.
        fallback_callback: ``(from_spec, to_spec, error_message)`` on each switch.
        usage_tracker: Receives token counts for every completed request.
        sleep: Awaitable sleep used between retries.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        fallback: Optional[FallbackConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        model: Optional[str] = None,
        fallback_callback: Optional[FallbackCallback] = None,
        usage_tracker: Optional[UsageTracker] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.fallback = fallback or FallbackConfig()
        self.retry_policy = retry_policy or RetryPolicy()
        self.usage = usage_tracker or UsageTracker()
        self._model_override = model
        self._fallback_callback = fallback_callback
        self._sleep = sleep
        self._provider: Optional[LLMProvider] = None
        self._init_lock = asyncio.Lock()

    def set_fallback_callback(self, callback: Optional[FallbackCallback]) -> None:
        self._fallback_callback = callback

    # ------------------------------------------------------------------
    # Provider selection
    # ------------------------------------------------------------------

    async def _status_of(self, provider: LLMProvider) -> ProviderStatus:
        try:
            return await provider.check_availability()
        except Exception as e:
            return ProviderStatus(False, f"Availability check failed: {e}")

    async def get_active_provider(self) -> LLMProvider:
        """Resolve (once) and return the primary provider.

        Raises:
            NoProviderConfigured: no provider reports itself available.
        """
        if self._provider is not None:
            return self._provider
        async with self._init_lock:
            if self._provider is not None:
                return self._provider
            reasons = []
            for provider_id in self.registry.selection_order():
                # The model override belongs to the preferred provider (or to
                # whichever provider is picked when none is preferred).
                use_override = self.registry.preferred in (None, provider_id)
                model = self._model_override if use_override else None
                provider = self.registry.get(provider_id, model)
                if provider is None:
                    continue
                status = await self._status_of(provider)
                if status.available:
                    await provider.initialize()
                    self._provider = provider
                    logger.info("Using provider %s", provider.spec)
                    return provider
                reasons.append(f"{provider_id}: {status.reason}")
            raise NoProviderConfigured(
                "No LLM provider available. " + "; ".join(reasons)
                if reasons else "No LLM provider registered"
            )

    @property
    def active_provider(self) -> Optional[LLMProvider]:
        return self._provider

    @property
    def active_model(self) -> Optional[str]:
        return self._provider.model if self._provider else self._model_override

    async def get_max_tools(self) -> Optional[int]:
        provider = await self.get_active_provider()
        return provider.max_tools

    async def get_provider_info(self) -> Dict[str, Any]:
        provider = await self.get_active_provider()
        return {"id": provider.info.id, "name": provider.info.name, "model": provider.model}

    async def get_available_providers(self) -> List[Dict[str, Any]]:
        result = []
        for provider, status in await self.registry.get_statuses():
            result.append({
                "id": provider.info.id,
                "name": provider.info.name,
                "available": status.available,
                "reason": status.reason,
            })
        return result

    async def switch_provider(self, provider_id: str, model: Optional[str] = None) -> LLMProvider:
        """Make ``provider_id`` the primary provider.

        Raises:
            NoProviderConfigured: the provider is unknown or unavailable.
        """
        provider = self.registry.get(provider_id, model)
        if provider is None:
            raise NoProviderConfigured(f"Unknown provider: {provider_id}")
        status = await self._status_of(provider)
        if not status.available:
            raise NoProviderConfigured(f"Provider {provider_id} is not available: {status.reason}")
        await provider.initialize()
        self.registry.preferred = provider.info.id
        self._model_override = model
        self._provider = provider
        logger.info("Switched provider to %s", provider.spec)
        return provider

    async def prewarm(self) -> None:
        """Best-effort warm-up of the active provider; never raises."""
        try:
            provider = await self.get_active_provider()
            await provider.prewarm()
        except Exception as e:
            logger.debug("Prewarm skipped: %s", e)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def _attempt(
        self,
        provider: LLMProvider,
        messages: List[Message],
        options: ChatOptions,
        on_chunk: Optional[Callable[[str], None]],
        should_abort: Optional[Callable[[], bool]],
    ) -> Message:
        async def once():
            return await collect_stream(provider.chat(messages, options), on_chunk)

        message, usage = await retry_async(
            once,
            self.retry_policy,
            description=f"{provider.spec} completion",
            sleep=self._sleep,
            should_abort=should_abort,
        )
        if usage is not None and usage.total_tokens:
            self.usage.add_usage(provider.model, usage.prompt_tokens, usage.completion_tokens)
        else:
            self.usage.add_estimated(provider.model, [m.to_dict() for m in messages], message.content or "")
        return message

    def _notify(self, from_spec: str, to_spec: str, error: BaseException) -> None:
        logger.warning("Falling back from %s to %s: %s", from_spec, to_spec, error)
        if self._fallback_callback is None:
            return
        try:
            self._fallback_callback(from_spec, to_spec, str(error))
        except Exception as cb_err:
            logger.debug("Fallback callback error: %s", cb_err)

    async def chat(
        self,
        messages: List[Message],
        tools: Optional[List[ToolDefinition]] = None,
        *,
        on_chunk: Optional[Callable[[str], None]] = None,
        should_abort: Optional[Callable[[], bool]] = None,
    ) -> Message:
        """Stream one completion and return the finalized assistant message.

        Raises:
            NoProviderConfigured: no primary provider is available.
            ProviderError: the primary failed and no fallback was attempted.
            AllFallbacksExhausted: at least one fallback was tried and all failed.
            Cancelled: ``should_abort`` turned true after a failed attempt.
        """
        primary = await self.get_active_provider()
        options = ChatOptions(tools=list(tools or []))

        def aborted() -> bool:
            return should_abort is not None and should_abort()

        try:
            return await self._attempt(primary, messages, options, on_chunk, should_abort)
        except Exception as e:
            if aborted():
                raise Cancelled(f"Request to {primary.spec} cancelled") from e
            error: BaseException = e
            if not self.fallback.enabled or not self.fallback.triggers_on(classify_error(e)):
                raise

        failed: Set[str] = {primary.spec}
        attempted: List[str] = []
        current_spec = primary.spec

        for spec in self.fallback.models:
            if len(attempted) >= self.fallback.max_attempts:
                break
            if aborted():
                raise Cancelled("Fallback cancelled") from error
            provider_id, model = parse_model_spec(spec)
            candidate = self.registry.get(provider_id, model)
            if candidate is None:
                logger.warning("Skipping fallback %s: unknown provider", spec)
                continue
            if candidate.spec in failed:
                continue
            status = await self._status_of(candidate)
            if not status.available:
                logger.info("Skipping fallback %s: %s", candidate.spec, status.reason)
                continue

            await candidate.initialize()
            self._notify(current_spec, candidate.spec, error)
            attempted.append(candidate.spec)
            try:
                return await self._attempt(candidate, messages, options, on_chunk, should_abort)
            except Exception as e:
                if aborted():
                    raise Cancelled(f"Request to {candidate.spec} cancelled") from e
                error = e
                failed.add(candidate.spec)
                current_spec = candidate.spec
                if not self.fallback.triggers_on(classify_error(e)):
                    break

        if attempted:
            raise AllFallbacksExhausted(error, attempted) from error
        raise error

    async def close(self) -> None:
        """Close provider connections; the next request re-resolves the provider."""
        await self.registry.close()
        self._provider = None
