"""Token usage accounting across a multi-step turn.

Vendors disagree on how they report usage while streaming. Some send a
running total for the whole turn, others send a fresh count per step of a
tool loop. :class:`UsageAccumulator` detects which mode each record is in
and turns it into a non-negative delta, so the accumulated totals never
double-count and never go backwards.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Optional

from ..logging import get_logger
from .token_counting import TokenCounter

logger = get_logger(__name__)


@dataclass
class UsageStats:
    """Token counts for one usage record, delta, or accumulated total.

    ``total_tokens`` of ``None`` means the provider did not report one; it is
    then taken as ``input + output``.
    """
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: Optional[int] = None
    cached_tokens: int = 0
    reasoning_tokens: int = 0
    step_count: Optional[int] = None

    @property
    def total(self) -> int:
        if self.total_tokens is not None:
            return self.total_tokens
        return (self.input_tokens or 0) + (self.output_tokens or 0)

    def is_zero(self) -> bool:
        return not (
            self.input_tokens > 0
            or self.output_tokens > 0
            or self.total > 0
            or self.cached_tokens > 0
            or self.reasoning_tokens > 0
        )

    def copy(self) -> "UsageStats":
        return UsageStats(**asdict(self))

    def to_dict(self) -> dict[str, Any]:
        data = {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total,
            "cached_tokens": self.cached_tokens,
            "reasoning_tokens": self.reasoning_tokens,
        }
        if self.step_count is not None:
            data["step_count"] = self.step_count
        return data


# ── Per-step category breakdown ────────────────────────────────────────

INPUT_CATEGORIES = (
    "system_instructions",
    "tool_definitions",
    "user_messages",
    "assistant_messages",
    "assistant_reasoning",
    "tool_results",
)
OUTPUT_CATEGORIES = ("output_text", "output_reasoning", "output_tool_calls")


@dataclass
class StepCategories:
    """Token counts by category for one step of a tool loop."""
    system_instructions: int = 0
    tool_definitions: int = 0
    user_messages: int = 0
    assistant_messages: int = 0
    assistant_reasoning: int = 0
    tool_results: int = 0
    output_text: int = 0
    output_reasoning: int = 0
    output_tool_calls: int = 0

    @property
    def input_total(self) -> int:
        return sum(getattr(self, name) for name in INPUT_CATEGORIES)

    @property
    def output_total(self) -> int:
        return sum(getattr(self, name) for name in OUTPUT_CATEGORIES)


@dataclass
class StepUsage:
    step_number: int
    categories: StepCategories
    provider_input_tokens: int = 0
    provider_output_tokens: int = 0
    cached_tokens: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_number": self.step_number,
            "categories": asdict(self.categories),
            "provider_input_tokens": self.provider_input_tokens,
            "provider_output_tokens": self.provider_output_tokens,
            "cached_tokens": self.cached_tokens,
            "input_total": self.categories.input_total,
            "output_total": self.categories.output_total,
        }


@dataclass
class AgenticSummary:
    """Accumulated vs unique token counts for a multi-step turn.

    Every step re-sends the whole context, so the provider bills the same
    system prompt and history once per step. ``resent`` counts those repeats
    per input category.
    """
    accumulated_input: int = 0
    unique_input: int = 0
    accumulated_output: int = 0
    unique_output: int = 0
    resent: dict[str, int] = field(default_factory=dict)


@dataclass
class AgenticBreakdown:
    steps: list[StepUsage] = field(default_factory=list)
    summary: AgenticSummary = field(default_factory=AgenticSummary)


class UsageAccumulator:
    """Reconciles provider usage records into monotonic per-turn totals.

    Example:
        >>> acc = UsageAccumulator()
        >>> acc.record_provider_usage(UsageStats(100, 10, 110)).total
        110
        >>> acc.record_provider_usage(UsageStats(100, 30, 130)).output_tokens
        20
    """

    def __init__(self) -> None:
        self._last_reported: Optional[UsageStats] = None
        self._accumulated = UsageStats(total_tokens=0)
        self._usage_emitted = False
        self._steps: list[StepUsage] = []

    def record_provider_usage(self, usage: UsageStats) -> UsageStats:
        """Fold one provider record into the totals and return its delta.

        A record whose total is at least the previous record's total is read
        as a running cumulative count; anything smaller starts a new step and
        is taken as-is.
        """
        prev = self._last_reported
        curr_total = usage.total
        cumulative = prev is not None and curr_total >= prev.total

        if prev is not None and cumulative:
            d_total = max(0, curr_total - prev.total)
            d_input = max(0, (usage.input_tokens or 0) - (prev.input_tokens or 0))
            d_output = max(0, d_total - d_input)
            delta = UsageStats(
                input_tokens=d_input,
                output_tokens=d_output,
                total_tokens=d_input + d_output,
                cached_tokens=max(0, (usage.cached_tokens or 0) - (prev.cached_tokens or 0)),
                reasoning_tokens=max(0, (usage.reasoning_tokens or 0) - (prev.reasoning_tokens or 0)),
                step_count=usage.step_count,
            )
        else:
            delta = UsageStats(
                input_tokens=max(0, usage.input_tokens or 0),
                output_tokens=max(0, usage.output_tokens or 0),
                total_tokens=max(0, curr_total),
                cached_tokens=max(0, usage.cached_tokens or 0),
                reasoning_tokens=max(0, usage.reasoning_tokens or 0),
                step_count=usage.step_count,
            )

        logger.debug(
            "Usage record",
            mode="cumulative->delta" if cumulative else "per-step",
            raw=usage.to_dict(),
            delta=delta.to_dict(),
        )

        acc = self._accumulated
        acc.input_tokens += delta.input_tokens
        acc.output_tokens += delta.output_tokens
        acc.total_tokens = acc.total + delta.total
        acc.cached_tokens += delta.cached_tokens
        acc.reasoning_tokens += delta.reasoning_tokens
        if usage.step_count is not None:
            acc.step_count = max(acc.step_count or 0, usage.step_count)

        self._last_reported = usage.copy()
        if not delta.is_zero():
            self._usage_emitted = True
        return delta

    def record_step_usage(self, step: StepUsage) -> None:
        """Store the category breakdown for one step.

        A step number reported twice (cumulative vendors report the same step
        more than once) replaces the earlier entry.
        """
        for i, existing in enumerate(self._steps):
            if existing.step_number == step.step_number:
                self._steps[i] = step
                return
        self._steps.append(step)

    def get_accumulated_totals(self) -> UsageStats:
        return self._accumulated.copy()

    def get_last_reported_usage(self) -> Optional[UsageStats]:
        return self._last_reported.copy() if self._last_reported else None

    @property
    def has_emitted_usage(self) -> bool:
        return self._usage_emitted

    def mark_usage_emitted(self) -> None:
        self._usage_emitted = True

    def emit_best_effort_usage(
        self,
        emit: Callable[[UsageStats], None],
        approx_input_tokens: int,
        approx_output_tokens: int,
    ) -> bool:
        """Emit one usage record if none was emitted yet.

        Prefers the last provider-reported record; otherwise falls back to
        the approximate counts. Returns True if something was emitted.
        """
        if self._usage_emitted:
            return False
        if self._last_reported is not None:
            usage = self._last_reported.copy()
        else:
            usage = UsageStats(
                input_tokens=approx_input_tokens,
                output_tokens=approx_output_tokens,
                total_tokens=approx_input_tokens + approx_output_tokens,
            )
        self._usage_emitted = True
        emit(usage)
        return True

    def agentic_breakdown(self) -> AgenticBreakdown:
        steps = sorted(self._steps, key=lambda s: s.step_number)
        summary = AgenticSummary()
        resent = {name: 0 for name in INPUT_CATEGORIES}
        for index, step in enumerate(steps):
            summary.accumulated_input += step.provider_input_tokens or step.categories.input_total
            summary.accumulated_output += step.provider_output_tokens or step.categories.output_total
            summary.unique_output += step.categories.output_total
            if index > 0:
                prev = steps[index - 1].categories
                # Whatever the previous step already sent is sent again
                for name in INPUT_CATEGORIES:
                    resent[name] += min(getattr(prev, name), getattr(step.categories, name))
        if steps:
            summary.unique_input = steps[-1].categories.input_total
        resent["total"] = sum(resent[name] for name in INPUT_CATEGORIES)
        summary.resent = resent
        return AgenticBreakdown(steps=steps, summary=summary)


# ── Tool I/O accounting ─────────────────────────────────────────────────

def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


@dataclass
class ToolUsageSnapshot:
    args_tokens_out: int = 0
    results_tokens_in: int = 0
    args_tokens_by_tool: dict[str, int] = field(default_factory=dict)
    results_tokens_by_tool: dict[str, int] = field(default_factory=dict)
    calls_by_tool: dict[str, int] = field(default_factory=dict)


class ToolUsageTracker:
    """Counts tool-call argument tokens (output) and result tokens (input).

    Args:
        token_counter: Counter for the request's provider/model.
        register_tool_result: Optional ``(call_id, data)`` callback used to
            hand structured results to a UI; called only when the result
            carries a ``preview`` payload.
    """

    def __init__(
        self,
        token_counter: TokenCounter,
        register_tool_result: Optional[Callable[[str, Any], None]] = None,
    ):
        self._counter = token_counter
        self._register = register_tool_result
        self._snapshot = ToolUsageSnapshot()

    def on_tool_start(self, name: str, arguments: Any = None, call_id: Optional[str] = None) -> None:
        key = (name or "").strip()
        snap = self._snapshot
        snap.calls_by_tool[key] = snap.calls_by_tool.get(key, 0) + 1
        if arguments is not None:
            tokens = self._counter.count(_as_text(arguments))
            snap.args_tokens_out += tokens
            snap.args_tokens_by_tool[key] = snap.args_tokens_by_tool.get(key, 0) + tokens

    def on_tool_end(self, name: str, result: Any = None, call_id: Optional[str] = None) -> None:
        if result is None:
            return
        key = (name or "").strip()
        snap = self._snapshot
        tokens = self._counter.count(_as_text(result))
        snap.results_tokens_in += tokens
        snap.results_tokens_by_tool[key] = snap.results_tokens_by_tool.get(key, 0) + tokens

        if call_id and self._register is not None and isinstance(result, dict) and "preview" in result:
            try:
                self._register(call_id, result["preview"])
            except Exception:
                logger.warning("Tool result registration failed", tool=key, call_id=call_id, exc_info=True)

    def snapshot(self) -> ToolUsageSnapshot:
        snap = self._snapshot
        return ToolUsageSnapshot(
            args_tokens_out=snap.args_tokens_out,
            results_tokens_in=snap.results_tokens_in,
            args_tokens_by_tool=dict(snap.args_tokens_by_tool),
            results_tokens_by_tool=dict(snap.results_tokens_by_tool),
            calls_by_tool=dict(snap.calls_by_tool),
        )


# ── Final breakdown ─────────────────────────────────────────────────────

@dataclass
class UsageBreakdown:
    """Categorised usage for one turn, emitted as ``usage_breakdown``.

    ``totals`` follows the precedence accumulated provider totals, then the
    last reported record, then the local estimate. ``estimated`` is True when
    the category counts come from the heuristic rather than a tokenizer.
    """
    input: dict[str, int]
    output: dict[str, int]
    totals: UsageStats
    estimated: bool
    tools: dict[str, dict[str, int]] = field(default_factory=dict)
    per_step: Optional[list[dict[str, Any]]] = None
    resent: Optional[dict[str, int]] = None
    comparison: Optional[dict[str, int]] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "input": dict(self.input),
            "output": dict(self.output),
            "totals": self.totals.to_dict(),
            "estimated": self.estimated,
            "tools": {k: dict(v) for k, v in self.tools.items()},
        }
        if self.per_step is not None:
            data["per_step"] = self.per_step
        if self.resent is not None:
            data["resent"] = dict(self.resent)
        if self.comparison is not None:
            data["comparison"] = dict(self.comparison)
        return data


def build_usage_breakdown(
    *,
    accumulator: UsageAccumulator,
    tool_usage: ToolUsageTracker,
    token_counter: TokenCounter,
    instructions_tokens: int,
    user_message_tokens: int,
    assistant_message_tokens: int,
    tool_definition_tokens: int,
    response_format_tokens: int,
    response_text: str,
) -> UsageBreakdown:
    """Assemble the end-of-turn :class:`UsageBreakdown`."""
    tools = tool_usage.snapshot()
    tool_result_tokens = tools.results_tokens_in
    assistant_text_tokens = token_counter.count(response_text)
    tool_call_tokens = tools.args_tokens_out

    calc_input = (
        instructions_tokens
        + user_message_tokens
        + assistant_message_tokens
        + tool_definition_tokens
        + response_format_tokens
        + tool_result_tokens
    )
    calc_output = assistant_text_tokens + tool_call_tokens

    accumulated = accumulator.get_accumulated_totals()
    last = accumulator.get_last_reported_usage()
    if accumulated.input_tokens > 0 or accumulated.output_tokens > 0 or accumulated.total > 0:
        totals = accumulated
        totals.step_count = totals.step_count or 0
    elif last is not None:
        totals = UsageStats(
            input_tokens=last.input_tokens,
            output_tokens=last.output_tokens,
            total_tokens=last.total,
            cached_tokens=max(0, last.cached_tokens or 0),
            reasoning_tokens=last.reasoning_tokens or 0,
            step_count=last.step_count or 0,
        )
    else:
        totals = UsageStats(
            input_tokens=calc_input,
            output_tokens=calc_output,
            total_tokens=calc_input + calc_output,
            step_count=0,
        )

    if totals.reasoning_tokens > 0:
        thoughts = totals.reasoning_tokens
    else:
        thoughts = max(0, totals.output_tokens - (assistant_text_tokens + tool_call_tokens))

    tool_names = set(tools.args_tokens_by_tool) | set(tools.results_tokens_by_tool)
    per_tool = {
        name: {
            "calls": tools.calls_by_tool.get(name, 0),
            "input_results": tools.results_tokens_by_tool.get(name, 0),
            "output_args": tools.args_tokens_by_tool.get(name, 0),
        }
        for name in sorted(tool_names)
    }

    agentic = accumulator.agentic_breakdown()
    multi_step = len(agentic.steps) > 1

    return UsageBreakdown(
        input={
            "instructions": instructions_tokens,
            "user_messages": user_message_tokens,
            "assistant_messages": assistant_message_tokens,
            "tool_definitions": tool_definition_tokens,
            "response_format": response_format_tokens,
            "tool_call_results": tool_result_tokens,
        },
        output={
            "assistant_text": assistant_text_tokens,
            "thoughts": thoughts,
            "tool_calls": tool_call_tokens,
        },
        totals=totals,
        estimated=not token_counter.precise,
        tools=per_tool,
        per_step=[s.to_dict() for s in agentic.steps] if multi_step else None,
        resent=agentic.summary.resent if multi_step else None,
        comparison={
            "accumulated_input": agentic.summary.accumulated_input,
            "unique_input": agentic.summary.unique_input,
            "accumulated_output": agentic.summary.accumulated_output,
            "unique_output": agentic.summary.unique_output,
        } if multi_step else None,
    )
