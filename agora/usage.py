"""Token usage and cost accounting across the calls of a debate."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from config.config_loader import ModelConfig
from agora.models import CallStatistics


@dataclass
class CostLine:
    label: str
    prompt_tokens: int
    response_tokens: int
    prompt_cost: float
    response_cost: float

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.response_tokens

    @property
    def total_cost(self) -> float:
        return self.prompt_cost + self.response_cost


@dataclass
class UsageSummary:
    calls: list[CostLine] = field(default_factory=list)
    per_model: list[CostLine] = field(default_factory=list)
    total: CostLine = field(default_factory=lambda: CostLine("Total", 0, 0, 0.0, 0.0))
    per_item_cost: float | None = None


def _cost_line(label: str, prompt_tokens: int, response_tokens: int, model: ModelConfig) -> CostLine:
    return CostLine(
        label=label,
        prompt_tokens=prompt_tokens,
        response_tokens=response_tokens,
        prompt_cost=prompt_tokens * model.prompt_cost_per_mille / 1000,
        response_cost=response_tokens * model.response_cost_per_mille / 1000,
    )


def _group_by_call_desc(stats: Sequence[CallStatistics]) -> list[CallStatistics]:
    grouped: dict[tuple[str, str], CallStatistics] = {}
    for stat in stats:
        key = (stat.model, stat.call_desc)
        if key in grouped:
            grouped[key].prompt_tokens += stat.prompt_tokens
            grouped[key].response_tokens += stat.response_tokens
        else:
            grouped[key] = CallStatistics(stat.model, stat.prompt_tokens, stat.response_tokens, stat.call_desc)
    return list(grouped.values())


def summarize_usage(
    stats: Sequence[CallStatistics],
    models: Mapping[str, ModelConfig],
    group_by_call_desc: bool = False,
    divide_by: int | None = None,
) -> UsageSummary:
    """Price every call, every model and the whole run.

    Args:
        stats: Per-call token statistics.
        models: Model properties keyed by ModelConfig.name.
        group_by_call_desc: Merge calls sharing a call_desc into one line.
        divide_by: When set, also report the total cost divided by this count.

    Raises:
        KeyError: If a statistic names a model missing from models.
    """
    if group_by_call_desc:
        stats = _group_by_call_desc(stats)

    summary = UsageSummary()
    for stat in stats:
        model = models[stat.model]
        summary.calls.append(
            _cost_line(f"{model.readable_name} {stat.call_desc}".strip(), stat.prompt_tokens, stat.response_tokens, model)
        )

    for name, model in models.items():
        model_stats = [s for s in stats if s.model == name]
        if not model_stats:
            continue
        summary.per_model.append(
            _cost_line(
                f"{model.readable_name} total",
                sum(s.prompt_tokens for s in model_stats),
                sum(s.response_tokens for s in model_stats),
                model,
            )
        )

    summary.total = CostLine(
        label="Total",
        prompt_tokens=sum(line.prompt_tokens for line in summary.per_model),
        response_tokens=sum(line.response_tokens for line in summary.per_model),
        prompt_cost=sum(line.prompt_cost for line in summary.per_model),
        response_cost=sum(line.response_cost for line in summary.per_model),
    )
    if divide_by:
        summary.per_item_cost = summary.total.total_cost / divide_by
    return summary
