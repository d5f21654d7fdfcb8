"""The request/response orchestrator.

:class:`LLMService` takes one conversational turn from provider resolution
to the final usage breakdown:

    Idle -> ResolvingProvider -> Formatting -> Streaming -> Finalizing
         -> Completed | Cancelled | Failed

Runtime failures never raise to the caller. Every call returns a
:class:`ServiceResponse`; a non-empty ``error`` is authoritative even when
partial ``text`` came back with it.
"""

from __future__ import annotations

import dataclasses
import json
from enum import Enum
from typing import Any, Callable, Optional

from ..config import ServiceConfig
from ..context import ConversationContext, ContextManager
from ..events import (
    ChunkEvent,
    ErrorEvent,
    EventSink,
    NullEventSink,
    RateLimitWaitEvent,
    ReasoningEvent,
    TokenUsageEvent,
    ToolEndEvent,
    ToolErrorEvent,
    ToolStartEvent,
    UsageBreakdownEvent,
)
from ..logging import get_logger
from ..logging.context import request_context
from ..pricing import PricingTable, calculate_cost, resolve_model_pricing
from ..providers import default_adapter
from ..tools.policy import wrap_tools_with_policy
from ..tools.schema_converters import tool_definitions_text
from .cancellation import DEFAULT_CANCEL_REASON, CancellationToken
from .errors import (
    LLMServiceError,
    MissingCredentialError,
    RequestCancelledError,
    error_message,
    is_cancellation_message,
    is_retryable,
    parse_rate_limit_error,
)
from .formatting import (
    WirePayload,
    build_loggable_payload,
    estimate_input_tokens,
    format_context,
    format_stateless,
    normalize_response_schema,
)
from .protocols import CredentialSource, ProviderAdapter, RateLimiter, StreamCallbacks, StreamRequest
from .rate_limits import RateLimitTracker
from .retry import RetryPolicy, with_retries
from .sampling import resolve_sampling
from .stream_merge import ChunkMerger
from .token_counting import TokenCounter
from .types import ChatMessage, ServiceRequest, ServiceResponse, StepOutput, content_as_text, content_equal
from .usage import (
    StepCategories,
    StepUsage,
    ToolUsageTracker,
    UsageAccumulator,
    UsageStats,
    build_usage_breakdown,
)
from .vendors import Vendor, capabilities_for

logger = get_logger(__name__)

PROACTIVE_WAIT_REASON = "Proactive rate limit enforcement"


class ServiceState(str, Enum):
    IDLE = "idle"
    RESOLVING_PROVIDER = "resolving_provider"
    FORMATTING = "formatting"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class _Turn:
    """Mutable state of one call, owned by :meth:`LLMService.chat`.

    Every adapter callback lands on a method here, so the running text,
    reasoning and usage are mutated in one place.
    """

    def __init__(
        self,
        *,
        vendor: Vendor,
        model: str,
        sink: EventSink,
        counter: TokenCounter,
        forward_chunks: bool,
        pricing: Any,
        register_tool_result: Optional[Callable[[str, Any], None]],
    ):
        self.vendor = vendor
        self.model = model
        self.sink = sink
        self.counter = counter
        self.forward_chunks = forward_chunks
        self.pricing = pricing
        self.merger = ChunkMerger(dedupe=capabilities_for(vendor, model).dedupe_stream_text)
        self.reasoning_parts: list[str] = []
        self.accumulator = UsageAccumulator()
        self.tool_usage = ToolUsageTracker(counter, register_tool_result)
        # Set once text, reasoning or a tool call has reached the sink
        self.has_output = False

        # Fixed per-turn input sizes, set once the payload is built
        self.instructions_tokens = 0
        self.tool_definition_tokens = 0
        self.user_message_tokens = 0
        self.assistant_message_tokens = 0
        self.response_format_tokens = 0
        self.approx_input_tokens = 0

        # What earlier steps of this turn produced; re-sent on the next step
        self.prior_step_text = ""
        self.prior_step_reasoning = ""

    @property
    def provider(self) -> str:
        return self.vendor.value

    @property
    def text(self) -> str:
        return self.merger.text

    @property
    def reasoning(self) -> Optional[str]:
        return "".join(self.reasoning_parts) or None

    def can_retry(self, exc: BaseException) -> bool:
        """A failed attempt is replayed only if it produced nothing visible."""
        if self.has_output:
            logger.warning("Not retrying after partial output", error_type=type(exc).__name__)
            return False
        return is_retryable(exc)

    def measure(self, payload: WirePayload, tools: list[Any], response_schema: Optional[dict[str, Any]]) -> None:
        count = self.counter.count
        self.instructions_tokens = count(payload.instructions)
        self.tool_definition_tokens = count(tool_definitions_text(tools))
        for message in payload.messages:
            tokens = count(content_as_text(message.get("content", "")))
            if message.get("role") == "user":
                self.user_message_tokens += tokens
            elif message.get("role") == "assistant":
                self.assistant_message_tokens += tokens
        if response_schema:
            self.response_format_tokens = count(json.dumps(response_schema, default=str))
        self.approx_input_tokens = estimate_input_tokens(payload) + self.tool_definition_tokens

    # ── adapter callbacks ──

    def on_chunk(self, fragment: str) -> None:
        emitted = self.merger.push(fragment)
        if emitted:
            self.has_output = True
        if emitted and self.forward_chunks:
            self.sink.emit(ChunkEvent(self.provider, self.model, emitted))

    def on_reasoning(self, fragment: str) -> None:
        if not fragment:
            return
        self.has_output = True
        self.reasoning_parts.append(fragment)
        self.sink.emit(ReasoningEvent(self.provider, self.model, fragment))

    def on_tool_start(self, name: str, call_id: Optional[str], arguments: Any) -> None:
        self.has_output = True
        self.tool_usage.on_tool_start(name, arguments, call_id)
        self.sink.emit(ToolStartEvent(self.provider, self.model, name, call_id, arguments))

    def on_tool_end(self, name: str, call_id: Optional[str], result: Any) -> None:
        self.tool_usage.on_tool_end(name, result, call_id)
        self.sink.emit(ToolEndEvent(self.provider, self.model, name, call_id, result))

    def on_tool_error(self, name: str, call_id: Optional[str], error: str) -> None:
        self.sink.emit(ToolErrorEvent(self.provider, self.model, name, error, call_id))

    def on_token_usage(self, usage: UsageStats, step_output: Optional[StepOutput]) -> None:
        delta = self.accumulator.record_provider_usage(usage)
        self._record_step(usage, delta, step_output or StepOutput())
        if not delta.is_zero():
            self.emit_usage(delta)

    def _record_step(self, usage: UsageStats, delta: UsageStats, step_output: StepOutput) -> None:
        count = self.counter.count
        categories = StepCategories(
            system_instructions=self.instructions_tokens,
            tool_definitions=self.tool_definition_tokens,
            user_messages=self.user_message_tokens,
            assistant_messages=self.assistant_message_tokens + count(self.prior_step_text),
            assistant_reasoning=count(self.prior_step_reasoning),
            tool_results=self.tool_usage.snapshot().results_tokens_in,
            output_text=count(step_output.text),
            output_reasoning=count(step_output.reasoning),
            output_tool_calls=count("".join(step_output.tool_args)),
        )
        self.accumulator.record_step_usage(StepUsage(
            step_number=usage.step_count or 1,
            categories=categories,
            provider_input_tokens=delta.input_tokens,
            provider_output_tokens=delta.output_tokens,
            cached_tokens=delta.cached_tokens,
        ))
        if step_output.text:
            self.prior_step_text += ("\n" if self.prior_step_text else "") + step_output.text
        if step_output.reasoning:
            self.prior_step_reasoning += ("\n" if self.prior_step_reasoning else "") + step_output.reasoning

    def emit_usage(self, usage: UsageStats) -> None:
        cost = calculate_cost(usage, self.pricing).to_dict() if self.pricing is not None else None
        self.sink.emit(TokenUsageEvent(self.provider, self.model, usage.to_dict(), cost))

    def emit_best_effort_usage(self) -> bool:
        return self.accumulator.emit_best_effort_usage(
            self.emit_usage,
            self.approx_input_tokens,
            self.counter.count(self.text),
        )

    def emit_breakdown(self) -> None:
        breakdown = build_usage_breakdown(
            accumulator=self.accumulator,
            tool_usage=self.tool_usage,
            token_counter=self.counter,
            instructions_tokens=self.instructions_tokens,
            user_message_tokens=self.user_message_tokens,
            assistant_message_tokens=self.assistant_message_tokens,
            tool_definition_tokens=self.tool_definition_tokens,
            response_format_tokens=self.response_format_tokens,
            response_text=self.text,
        )
        logger.debug("Final usage", totals=breakdown.totals.to_dict(), estimated=breakdown.estimated)
        self.sink.emit(UsageBreakdownEvent(self.provider, self.model, breakdown.to_dict()))

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_chunk=self.on_chunk,
            on_reasoning=self.on_reasoning,
            on_tool_start=self.on_tool_start,
            on_tool_end=self.on_tool_end,
            on_tool_error=self.on_tool_error,
            on_token_usage=self.on_token_usage,
        )


class LLMService:
    """Vendor-neutral streaming chat.

    Args:
        credentials: Source of API keys per provider.
        rate_limiter: Proactive limiter; a fresh :class:`RateLimitTracker`
            when omitted.
        retry_policy: Retry bounds; derived from *config* when omitted.
        config: Service knobs.
        adapters: Adapter overrides by vendor; vendors not listed use the
            SDK-backed defaults.
        pricing: Pricing table for per-event cost; the bundled table when
            omitted.
        register_tool_result: ``(call_id, preview)`` hook for tool results
            that carry a UI preview.

    Example:
        >>> service = LLMService(EnvCredentialSource())
        >>> manager = InMemoryContextManager(ConversationContext(provider="openai", model="gpt-4o"))
        >>> response = await service.chat(ServiceRequest(message="Hello"), manager, QueueEventSink())
        >>> response.text
        'Hi there!'
    """

    def __init__(
        self,
        credentials: CredentialSource,
        rate_limiter: Optional[RateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        config: Optional[ServiceConfig] = None,
        adapters: Optional[dict[Vendor, ProviderAdapter]] = None,
        pricing: Optional[PricingTable] = None,
        register_tool_result: Optional[Callable[[str, Any], None]] = None,
    ):
        self.config = config or ServiceConfig()
        self.credentials = credentials
        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimitTracker()
        self.retry_policy = retry_policy or self.config.retry_policy()
        self.pricing = pricing
        self.register_tool_result = register_tool_result
        self._adapters: dict[Vendor, ProviderAdapter] = dict(adapters or {})
        self.last_state = ServiceState.IDLE

    def adapter_for(self, vendor: Vendor) -> ProviderAdapter:
        if vendor not in self._adapters:
            self._adapters[vendor] = default_adapter(vendor)
        return self._adapters[vendor]

    async def chat(
        self,
        request: ServiceRequest,
        context_manager: ContextManager,
        sink: Optional[EventSink] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ServiceResponse:
        """Run one turn and return its text, reasoning and error."""
        sink = sink or NullEventSink()
        cancel_token = cancel_token or CancellationToken()

        self.last_state = ServiceState.RESOLVING_PROVIDER
        context = context_manager.get()
        provider_id = request.provider or context.provider or self.config.default_provider
        model = request.model or context.model or self.config.default_model
        try:
            vendor = Vendor.parse(provider_id)
            if not model:
                raise LLMServiceError(f"No model configured for provider: {vendor.value}")
            api_key = self.credentials.get_key(vendor.value)
            if not api_key:
                raise MissingCredentialError(vendor.value)
            adapter = self.adapter_for(vendor)
        except LLMServiceError as e:
            self.last_state = ServiceState.FAILED
            message = error_message(e)
            logger.error("Provider resolution failed", provider=provider_id, model=model, error=message)
            sink.emit(ErrorEvent(str(provider_id or ""), str(model or ""), message))
            return ServiceResponse(error=message)

        logger.debug("Resolved provider", provider=vendor.value, model=model, skip_history=request.skip_history)
        with request_context(
            request_id=request.request_id,
            context_id=context.context_id,
            provider=vendor.value,
            model=model,
        ):
            return await self._run_turn(request, context_manager, context, vendor, model, api_key, adapter, sink, cancel_token)

    async def _run_turn(
        self,
        request: ServiceRequest,
        context_manager: ContextManager,
        context: ConversationContext,
        vendor: Vendor,
        model: str,
        api_key: str,
        adapter: ProviderAdapter,
        sink: EventSink,
        cancel_token: CancellationToken,
    ) -> ServiceResponse:
        counter = TokenCounter(vendor.value, model)
        turn = _Turn(
            vendor=vendor,
            model=model,
            sink=sink,
            counter=counter,
            forward_chunks=not request.skip_history or self.config.forward_skip_history_chunks,
            pricing=resolve_model_pricing(vendor.value, model, self.pricing),
            register_tool_result=self.register_tool_result,
        )
        streaming_started = False
        try:
            self.last_state = ServiceState.FORMATTING
            if request.response_schema is not None:
                normalize_response_schema(request.response_schema)
            payload = self._build_payload(request, context_manager, context, vendor, model)
            sampling = resolve_sampling(vendor.value, model, context, request.reasoning_effort)
            tools = wrap_tools_with_policy(list(request.tools), self.config.tool_policy)
            turn.measure(payload, tools, request.response_schema)
            logger.debug(
                "Request payload",
                payload=build_loggable_payload(
                    vendor, payload, model=model, tools=tools, response_schema=request.response_schema,
                    extra={"sampling": dataclasses.asdict(sampling)},
                ),
            )

            self.last_state = ServiceState.STREAMING
            streaming_started = True
            cancel_token.raise_if_cancelled()
            await self._proactive_wait(vendor, model, sink, cancel_token)

            stream_request = StreamRequest(
                vendor=vendor,
                api_key=api_key,
                model=model,
                payload=payload,
                sampling=sampling,
                tools=tools,
                response_schema=request.response_schema,
                max_output_tokens=self.config.max_output_tokens,
                callbacks=turn.callbacks(),
            )
            stream_request.callbacks.on_headers = self._header_hook(vendor, model)

            async def attempt() -> None:
                self.rate_limiter.record_request(vendor.value, model)
                handle = await adapter.stream(stream_request)
                # Fires at most once: the token runs each callback a single time
                remove = cancel_token.add_callback(handle.cancel)
                try:
                    await handle.wait()
                finally:
                    remove()

            await with_retries(
                attempt,
                self.retry_policy,
                cancel_token=cancel_token,
                on_rate_limit_wait=lambda n, wait_ms, reason: sink.emit(
                    RateLimitWaitEvent(vendor.value, model, n, wait_ms, reason)
                ),
                on_error=lambda exc: self._learn_from_error(vendor, model, exc),
                should_retry=turn.can_retry,
            )

            self.last_state = ServiceState.FINALIZING
            text, reasoning = turn.text, turn.reasoning
            if not request.skip_history and text:
                context_manager.add_message(ChatMessage(role="assistant", content=text, reasoning=reasoning))
            turn.emit_breakdown()
            self.last_state = ServiceState.COMPLETED
            logger.debug("Request completed", text_chars=len(text), reasoning_chars=len(reasoning or ""))
            return ServiceResponse(text=text, reasoning=reasoning)
        except Exception as e:
            if cancel_token.cancelled or isinstance(e, RequestCancelledError):
                return self._cancelled(turn, cancel_token, e)
            return self._failed(turn, e, streaming_started)
        finally:
            counter.dispose()

    def _build_payload(
        self,
        request: ServiceRequest,
        context_manager: ContextManager,
        context: ConversationContext,
        vendor: Vendor,
        model: str,
    ) -> WirePayload:
        if request.skip_history:
            shape = capabilities_for(vendor, model).wire_shape
            system_text = request.system_instructions or context.system_instructions
            return format_stateless(request.message, system_text, shape)

        last = context.last_message
        if last is not None and last.role == "user" and content_equal(last.content, request.message):
            logger.debug("User message already last in context; not appending")
        else:
            context_manager.add_message(ChatMessage(role="user", content=request.message))
            context = context_manager.get()
        if request.system_instructions:
            context = dataclasses.replace(context, system_instructions=request.system_instructions)
        return format_context(context, vendor, model)

    async def _proactive_wait(self, vendor: Vendor, model: str, sink: EventSink, cancel_token: CancellationToken) -> None:
        wait_ms = await self.rate_limiter.check_and_wait(vendor.value, model)
        if wait_ms <= 0:
            return
        logger.info("Waiting for rate limit", wait_ms=wait_ms)
        sink.emit(RateLimitWaitEvent(vendor.value, model, 0, wait_ms, PROACTIVE_WAIT_REASON))
        await cancel_token.sleep(wait_ms / 1000)

    def _learn_from_error(self, vendor: Vendor, model: str, exc: BaseException) -> None:
        info = parse_rate_limit_error(exc)
        if info.is_rate_limit:
            self.rate_limiter.update_from_error(vendor.value, model, exc, info)

    def _header_hook(self, vendor: Vendor, model: str) -> Callable[[Any], None]:
        update = getattr(self.rate_limiter, "update_from_headers", None)

        def on_headers(headers: Any) -> None:
            if update is not None:
                update(vendor.value, model, headers)

        return on_headers

    def _cancelled(self, turn: _Turn, cancel_token: CancellationToken, exc: BaseException) -> ServiceResponse:
        self.last_state = ServiceState.CANCELLED
        reason = cancel_token.reason or error_message(exc)
        message = reason if is_cancellation_message(reason) else f"{DEFAULT_CANCEL_REASON}: {reason}"
        turn.emit_best_effort_usage()
        turn.emit_breakdown()
        logger.info("Request cancelled", reason=reason, text_chars=len(turn.text))
        return ServiceResponse(text=turn.text, reasoning=turn.reasoning, error=message)

    def _failed(self, turn: _Turn, exc: BaseException, streaming_started: bool) -> ServiceResponse:
        self.last_state = ServiceState.FAILED
        message = error_message(exc)
        if streaming_started:
            turn.emit_best_effort_usage()
            turn.emit_breakdown()
        if is_cancellation_message(message):
            logger.info("Request stopped", error=message)
        else:
            logger.error("Request failed", error_type=type(exc).__name__, error=message)
            turn.sink.emit(ErrorEvent(turn.provider, turn.model, message))
        return ServiceResponse(text=turn.text, reasoning=turn.reasoning, error=message)
