"""Collaborative pipeline: providers take turns in a multi-round discussion."""

import asyncio
import dataclasses
import logging

from chorus.errors import PipelineError
from chorus.models import Request, Response
from chorus.pipelines.base import Option, Pipeline, build_options, generate_with_retries
from chorus.providers.base import AIProvider

logger = logging.getLogger(__name__)

DEFAULT_ROUNDS = 3
SUMMARY_TEMPERATURE = 0.3


def _turn_prompt(discussion: str, round_number: int, provider_name: str) -> str:
    return (
        f"{discussion}\n\n"
        f"Round {round_number}, {provider_name}'s turn: Please add your thoughts on this topic."
    )


def _summary_prompt(discussion: str) -> str:
    return (
        f"{discussion}\n\n"
        "Please provide a concise summary of this discussion, highlighting the key points "
        "and areas of agreement or disagreement."
    )


class CollaborativePipeline(Pipeline):
    """Round-based discussion followed by a summary from the first provider.

    A failed summary is the single degraded path: the raw discussion is returned
    instead, with metadata["summary_failed"] set.
    """

    def __init__(self, providers: list[AIProvider], rounds: int = DEFAULT_ROUNDS, *opts: Option) -> None:
        self.providers = list(providers)
        self.rounds = rounds if rounds > 0 else DEFAULT_ROUNDS
        self.options = build_options(opts)

    def describe(self) -> str:
        return "collaborative"

    async def execute_with_request(self, request: Request) -> Response:
        if not self.providers:
            raise PipelineError("collaborative pipeline needs at least one provider")

        discussion = f"Topic: {request.prompt}"
        for round_number in range(1, self.rounds + 1):
            logger.info("Collaborative round %d/%d", round_number, self.rounds)
            for provider in self.providers:
                turn = dataclasses.replace(
                    request,
                    prompt=_turn_prompt(discussion, round_number, provider.name()),
                )
                logger.debug("Round %d prompt for %s: %s", round_number, provider.name(), turn.prompt)
                try:
                    reply = await generate_with_retries(
                        provider, turn, self.options.max_retries, context=f"in round {round_number}"
                    )
                except Exception as exc:
                    raise PipelineError(
                        f"provider {provider.name()} failed in round {round_number}: {exc}",
                        provider=provider.name(),
                        round_number=round_number,
                    ) from exc
                discussion += f"\n\n{provider.name()} (Round {round_number}): {reply.content}"

            # cancellation checkpoint at the round boundary
            await asyncio.sleep(0)

        metadata = {
            "full_discussion": discussion,
            "rounds": self.rounds,
            "providers": [p.name() for p in self.providers],
        }

        summarizer = self.providers[0]
        summary_request = dataclasses.replace(
            request,
            prompt=_summary_prompt(discussion),
            temperature=SUMMARY_TEMPERATURE,
        )
        try:
            summary = await summarizer.generate(summary_request)
        except Exception as exc:
            logger.warning(
                "Summary by %s failed, returning the raw discussion: %s", summarizer.name(), exc
            )
            return Response(
                content=discussion,
                provider="collaborative",
                metadata={**metadata, "summary_failed": True},
            )

        return Response(
            content=summary.content,
            provider="collaborative",
            model=summary.model,
            usage=summary.usage,
            metadata=metadata,
        )
