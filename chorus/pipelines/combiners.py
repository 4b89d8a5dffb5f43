"""Result combiners: reduce an ordered list of responses to a single response.

Every combiner fails with CombinationError on an empty input list. Selection
combiners return a copy of the chosen response with provenance recorded in its
metadata; they never mutate their inputs.
"""

import dataclasses
import logging
import random
import re
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from chorus.errors import CombinationError, ConfigurationError
from chorus.models import ProviderResponse, Request, Response, Usage
from chorus.providers.base import AIProvider

logger = logging.getLogger(__name__)

DEFAULT_SEPARATOR = "\n\n"
DEFAULT_MIN_LENGTH = 50
CONSENSUS_MAX_TOKENS = 2048
JUDGE_TEMPERATURE = 0.1

_VOTE_RE = re.compile(r"^\s*VOTE:\s*(\d+)", re.IGNORECASE | re.MULTILINE)
_REASON_RE = re.compile(r"^\s*REASON:\s*(.*)$", re.IGNORECASE | re.MULTILINE)
_NUMBER_RE = re.compile(r"\d+")


class ResultCombiner(ABC):
    @abstractmethod
    async def combine(self, results: list[Response]) -> Response:
        ...

    async def combine_texts(self, results: list[ProviderResponse]) -> str:
        """Combine bare provider/content pairs and return only the combined text."""
        responses = [Response(content=r.content, provider=r.provider_name) for r in results]
        return (await self.combine(responses)).content


def _require_results(results: list[Response]) -> None:
    if not results:
        raise CombinationError("no results to combine")


def _annotate(response: Response, **metadata: Any) -> Response:
    return dataclasses.replace(response, metadata={**response.metadata, **metadata})


def _sources(results: list[Response]) -> list[str]:
    return [r.provider for r in results]


def _numbered(results: list[Response]) -> str:
    parts = []
    for i, result in enumerate(results, start=1):
        provider = result.provider or f"Provider {i}"
        parts.append(f"Response {i} (from {provider}):\n{result.content}")
    return "\n\n".join(parts)


class ConcatCombiner(ResultCombiner):
    """Join all non-empty contents with a separator and sum token usage."""

    def __init__(self, separator: str = DEFAULT_SEPARATOR) -> None:
        self.separator = separator or DEFAULT_SEPARATOR

    async def combine(self, results: list[Response]) -> Response:
        _require_results(results)
        contents = [r.content for r in results if r.content]
        prompt_tokens = sum(r.usage.prompt_tokens for r in results if r.usage)
        completion_tokens = sum(r.usage.completion_tokens for r in results if r.usage)
        return Response(
            content=self.separator.join(contents),
            provider="concat_combiner",
            model="combined",
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            metadata={"source_count": len(results), "sources": _sources(results)},
        )


class MajorityVoteCombiner(ResultCombiner):
    """Pick the most common answer by exact text equality after trimming."""

    async def combine(self, results: list[Response]) -> Response:
        _require_results(results)
        groups: dict[str, list[Response]] = {}
        for result in results:
            groups.setdefault(result.content.strip(), []).append(result)

        # dicts keep insertion order, so ties go to the answer seen first
        winners = max(groups.values(), key=len)
        votes = len(winners)
        return _annotate(
            winners[0],
            votes=votes,
            total_responses=len(results),
            consensus_ratio=votes / len(results),
        )


class FirstSuccessfulCombiner(ResultCombiner):
    async def combine(self, results: list[Response]) -> Response:
        for result in results:
            if result.content:
                return result
        raise CombinationError("no successful results")


class LongestResponseCombiner(ResultCombiner):
    async def combine(self, results: list[Response]) -> Response:
        _require_results(results)
        longest = results[0]
        for result in results[1:]:
            if len(result.content) > len(longest.content):
                longest = result
        return longest


class RoundRobinCombiner(ResultCombiner):
    """Spread selection across positions for load distribution.

    The counter is shared across calls and incremented under a lock before it is
    read, so the first call selects position 1 % N.
    """

    def __init__(self) -> None:
        self._counter = 0
        self._lock = threading.Lock()

    async def combine(self, results: list[Response]) -> Response:
        _require_results(results)
        with self._lock:
            self._counter += 1
            index = self._counter % len(results)
        return results[index]


class RandomCombiner(ResultCombiner):
    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    async def combine(self, results: list[Response]) -> Response:
        _require_results(results)
        return results[self._rng.randrange(len(results))]


class ConsensusCombiner(ResultCombiner):
    """Ask an evaluator provider to synthesise one answer from all responses.

    Evaluator failure is fatal: there is no fallback to any single response.
    """

    def __init__(self, evaluator: AIProvider) -> None:
        self.evaluator = evaluator

    async def combine(self, results: list[Response]) -> Response:
        _require_results(results)
        if len(results) == 1:
            return results[0]

        prompt = (
            "Multiple AI providers have given the following responses. "
            "Please synthesize these into a single, consensus response that captures "
            "the key points where they agree and notes any significant disagreements:\n\n"
            f"{_numbered(results)}\n\n"
            "Synthesized consensus response:"
        )
        logger.info("Requesting consensus from %s over %d responses", self.evaluator.name(), len(results))
        try:
            consensus = await self.evaluator.generate(
                Request(prompt=prompt, max_tokens=CONSENSUS_MAX_TOKENS)
            )
        except Exception as exc:
            raise CombinationError(f"failed to generate consensus: {exc}") from exc

        return dataclasses.replace(
            consensus,
            metadata={
                "consensus_from": len(results),
                "sources": _sources(results),
                "method": "ai_synthesis",
            },
        )


class WeightedCombiner(ResultCombiner):
    """Return the response from the highest-weighted provider (unknown providers weigh 1.0)."""

    def __init__(self, weights: dict[str, float] | None = None) -> None:
        self.weights = dict(weights or {})

    async def combine(self, results: list[Response]) -> Response:
        _require_results(results)
        best, best_weight = results[0], self.weights.get(results[0].provider, 1.0)
        for result in results[1:]:
            weight = self.weights.get(result.provider, 1.0)
            if weight > best_weight:
                best, best_weight = result, weight
        return _annotate(best, selected_weight=best_weight)


class QualityScoreCombiner(ResultCombiner):
    """Score each response 0-100 on length and structure and return the best.

    Length earns up to 50 points, reaching full credit at four times min_length.
    Multiple paragraphs add 20, list markup 15, fenced code blocks 15.
    """

    def __init__(self, min_length: int = DEFAULT_MIN_LENGTH) -> None:
        self.min_length = min_length if min_length > 0 else DEFAULT_MIN_LENGTH

    def score(self, response: Response) -> float:
        content = response.content
        score = 50.0 * min(1.0, len(content) / (self.min_length * 4))
        if "\n\n" in content.strip():
            score += 20.0
        if any(marker in "\n" + content for marker in ("\n- ", "\n* ", "\n1. ")):
            score += 15.0
        if "```" in content:
            score += 15.0
        return score

    async def combine(self, results: list[Response]) -> Response:
        _require_results(results)
        best, best_score = results[0], self.score(results[0])
        for result in results[1:]:
            candidate = self.score(result)
            if candidate > best_score:
                best, best_score = result, candidate
        return _annotate(best, quality_score=best_score)


class BestPickerCombiner(ResultCombiner):
    """Ask a judge provider for the number of the best response."""

    def __init__(self, judge: AIProvider) -> None:
        self.judge = judge

    async def combine(self, results: list[Response]) -> Response:
        _require_results(results)
        if len(results) == 1:
            return results[0]

        prompt = (
            "Please evaluate the following responses and select the best one. "
            "Return ONLY the number of the best response (1, 2, etc.) without explanation.\n\n"
            f"{_numbered(results)}"
        )
        try:
            verdict = await self.judge.generate(Request(prompt=prompt, temperature=JUDGE_TEMPERATURE))
        except Exception as exc:
            raise CombinationError(f"error asking judge {self.judge.name()} to evaluate: {exc}") from exc

        judgment = verdict.content.strip()
        index = 0
        for match in _NUMBER_RE.finditer(judgment):
            number = int(match.group())
            if 1 <= number <= len(results):
                index = number - 1
                break
        else:
            logger.warning("Judge %s gave no usable response number, using response 1", self.judge.name())

        return _annotate(
            results[index],
            judgment=judgment,
            judge_provider=self.judge.name(),
            total_responses=len(results),
            selected_index=index + 1,
        )


class JuryCombiner(ResultCombiner):
    """Several juror providers vote for the best response.

    Voting methods: "majority" (most votes, ties to the lowest response number),
    "consensus" (unanimous verdict, otherwise falls back to majority) and
    "weighted" (currently identical to majority).
    """

    VOTING_METHODS = ("majority", "consensus", "weighted")

    def __init__(self, jurors: list[AIProvider], voting: str = "majority") -> None:
        voting = voting or "majority"
        if voting not in self.VOTING_METHODS:
            raise ConfigurationError(f"unknown voting method: {voting}")
        if not jurors:
            raise ConfigurationError("jury combiner requires at least one juror")
        self.jurors = list(jurors)
        self.voting = voting

    def _ballot(self, results: list[Response]) -> str:
        return (
            "You are a member of an AI jury tasked with evaluating responses to a question or task.\n\n"
            "The following responses were provided by different AI systems:\n\n"
            f"{_numbered(results)}\n\n"
            "Your task:\n"
            "1. Carefully review each response\n"
            "2. Evaluate them based on accuracy, completeness, clarity, and relevance\n"
            "3. Provide your vote for the BEST response (just the number)\n"
            "4. Explain your reasoning in 2-3 sentences\n\n"
            "Format your answer as:\n"
            "VOTE: [response number]\n"
            "REASON: [your explanation]"
        )

    async def combine(self, results: list[Response]) -> Response:
        _require_results(results)
        ballot = Request(prompt=self._ballot(results))

        votes: list[dict[str, Any]] = []
        for juror in self.jurors:
            try:
                reply = await juror.generate(ballot)
            except Exception as exc:
                raise CombinationError(f"juror {juror.name()} failed to vote: {exc}") from exc
            vote_match = _VOTE_RE.search(reply.content)
            reason_match = _REASON_RE.search(reply.content)
            number = int(vote_match.group(1)) if vote_match else 0
            if not 1 <= number <= len(results):
                logger.warning("Juror %s cast an unusable vote, counting it for response 1", juror.name())
                number = 1
            votes.append({
                "juror": juror.name(),
                "response": number,
                "reason": reason_match.group(1).strip() if reason_match else "",
            })

        counts: dict[int, int] = {}
        for vote in votes:
            counts[vote["response"]] = counts.get(vote["response"], 0) + 1
        winner = min(counts, key=lambda n: (-counts[n], n))

        if self.voting == "consensus" and len(counts) == 1:
            deliberation = "The jury reached consensus."
        elif self.voting == "consensus":
            deliberation = (
                "The jury failed to reach consensus. The response with the most votes "
                f"({counts[winner]}/{len(votes)}) was selected."
            )
        else:
            deliberation = f"The jury selected the response with the most votes ({counts[winner]}/{len(votes)})."

        return _annotate(
            results[winner - 1],
            votes=votes,
            deliberation=deliberation,
            winning_index=winner,
            voting_method=self.voting,
        )


ProviderResolver = Callable[[str], AIProvider]
CombinerBuilder = Callable[[dict[str, Any], ProviderResolver], ResultCombiner]


def _required(settings: dict[str, Any], key: str, combiner: str) -> Any:
    value = settings.get(key)
    if not value:
        raise ConfigurationError(f"{combiner} combiner requires {key}")
    return value


COMBINERS: dict[str, CombinerBuilder] = {
    "concat": lambda s, _: ConcatCombiner(s.get("separator") or DEFAULT_SEPARATOR),
    "majority_vote": lambda s, _: MajorityVoteCombiner(),
    "first_successful": lambda s, _: FirstSuccessfulCombiner(),
    "longest": lambda s, _: LongestResponseCombiner(),
    "round_robin": lambda s, _: RoundRobinCombiner(),
    "random": lambda s, _: RandomCombiner(),
    "consensus": lambda s, resolve: ConsensusCombiner(resolve(_required(s, "judge", "consensus"))),
    "weighted": lambda s, _: WeightedCombiner(s.get("weights")),
    "quality_score": lambda s, _: QualityScoreCombiner(int(s.get("min_length") or DEFAULT_MIN_LENGTH)),
    "best_picker": lambda s, resolve: BestPickerCombiner(resolve(_required(s, "judge", "best_picker"))),
    "jury": lambda s, resolve: JuryCombiner(
        [resolve(name) for name in _required(s, "jurors", "jury")],
        s.get("voting") or "majority",
    ),
}


def build_combiner(name: str, settings: dict[str, Any], resolve: ProviderResolver) -> ResultCombiner:
    """Build a combiner by registry name.

    Raises:
        ConfigurationError: For an unknown name or missing required settings.
    """
    try:
        builder = COMBINERS[name]
    except KeyError:
        raise ConfigurationError(
            f"unknown combiner '{name}' (expected one of: {', '.join(sorted(COMBINERS))})"
        ) from None
    return builder(settings, resolve)
