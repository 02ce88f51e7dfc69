"""Combine sub-agent outputs into a single response."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..core.invoker import ModelInvoker
from ..core.options import AGGREGATION_MODES
from ..errors import AgentError
from ..providers.types import Message
from .protocol import DelegationOutcome

logger = logging.getLogger(__name__)

NO_SUCCESSFUL_RESPONSES = "No successful responses from worker agents"


@dataclass
class AggregationResult:
    response: str
    success: bool
    mode: str
    structured: bool = False
    fell_back: bool = False


class ResultAggregator:
    """Merge successful delegation outcomes according to an aggregation mode.

    Modes:
        concatenate: ``**name:**`` blocks separated by horizontal rules
        synthesize: the model writes one unified answer from all outputs
        best: the model picks the single best output
        structured: JSON object mapping agent name to output

    Failed outcomes are always left out. When a model-assisted mode cannot
    reach the model, the aggregator falls back to concatenation.
    """

    def __init__(self, invoker: Optional[ModelInvoker] = None):
        self.invoker = invoker

    async def aggregate(
        self,
        outcomes: Sequence[DelegationOutcome],
        mode: str = "synthesize",
        original_message: str = "",
    ) -> AggregationResult:
        if mode not in AGGREGATION_MODES:
            raise ValueError(f"aggregation_mode must be one of {', '.join(AGGREGATION_MODES)}")

        successful = [o for o in outcomes if o.success]
        skipped = len(outcomes) - len(successful)
        if skipped:
            logger.info(f"Aggregating {len(successful)} result(s); skipped {skipped} failed delegation(s)")
        if not successful:
            return AggregationResult(NO_SUCCESSFUL_RESPONSES, success=False, mode=mode)

        if mode == "concatenate":
            return AggregationResult(self.concatenate(successful), success=True, mode=mode)
        if mode == "structured":
            return AggregationResult(self.structured(successful), success=True, mode=mode, structured=True)

        if mode == "best":
            prompt = self._best_prompt(successful, original_message)
        else:
            prompt = self._synthesize_prompt(successful, original_message)
        return await self._ask_model(prompt, successful, mode)

    @staticmethod
    def concatenate(outcomes: Sequence[DelegationOutcome]) -> str:
        return "\n\n---\n\n".join(f"**{o.agent_name}:**\n{o.response}" for o in outcomes)

    @staticmethod
    def structured(outcomes: Sequence[DelegationOutcome]) -> str:
        merged: Dict[str, str] = {}
        for outcome in outcomes:
            key = outcome.agent_name
            suffix = 2
            while key in merged:
                key = f"{outcome.agent_name} ({suffix})"
                suffix += 1
            merged[key] = outcome.response
        return json.dumps(merged, indent=2, ensure_ascii=False)

    @staticmethod
    def _synthesize_prompt(outcomes: Sequence[DelegationOutcome], original_message: str) -> str:
        responses = "\n\n".join(f"**{o.agent_name}:**\n{o.response}" for o in outcomes)
        return (
            f'Synthesize responses from multiple AI agents to answer: "{original_message}"\n\n'
            f"Agent responses:\n{responses}\n\n"
            "Create a comprehensive, unified response."
        )

    @staticmethod
    def _best_prompt(outcomes: Sequence[DelegationOutcome], original_message: str) -> str:
        responses = "\n\n".join(
            f"Response {i} ({o.agent_name}):\n{o.response}" for i, o in enumerate(outcomes, start=1)
        )
        return (
            f'Given these responses to "{original_message}", pick the best one:\n\n'
            f"{responses}\n\n"
            "Return only the best response content."
        )

    async def _ask_model(
        self,
        prompt: str,
        outcomes: List[DelegationOutcome],
        mode: str,
    ) -> AggregationResult:
        if self.invoker is None:
            logger.warning(f"No model available for '{mode}' aggregation; concatenating results")
            return AggregationResult(self.concatenate(outcomes), success=True, mode=mode, fell_back=True)
        try:
            response = await self.invoker.invoke_messages([Message.user(prompt)], tools=None, tool_choice="none")
        except AgentError as e:
            logger.warning(f"'{mode}' aggregation failed ({e.kind.value}); concatenating results: {e.message}")
            return AggregationResult(self.concatenate(outcomes), success=True, mode=mode, fell_back=True)
        return AggregationResult(response.content or "", success=True, mode=mode)
