"""Adapters: plain callables as pipelines, and text transforms around a pipeline."""

import dataclasses
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from chorus.errors import ConfigurationError, PipelineError
from chorus.models import Request, Response
from chorus.pipelines.base import Option, Pipeline, build_options

logger = logging.getLogger(__name__)

ProcessFunc = Callable[[str], Awaitable[str]]
RequestProcessFunc = Callable[[Request], Awaitable[Response]]
Transform = Callable[[str], str]


class FunctionAdapter(Pipeline):
    """Expose an async function as a pipeline.

    Pass either fn (text in, text out) or request_fn (Request in, Response out).
    """

    def __init__(
        self,
        name: str,
        fn: ProcessFunc | None = None,
        *opts: Option,
        request_fn: RequestProcessFunc | None = None,
    ) -> None:
        if fn is None and request_fn is None:
            raise ConfigurationError(f"function adapter '{name}' needs a processing function")
        self.name = name
        self.fn = fn
        self.request_fn = request_fn
        self.options = build_options(opts)

    def describe(self) -> str:
        return self.name

    async def execute_with_request(self, request: Request) -> Response:
        if self.request_fn is not None:
            return await self.request_fn(request)
        content = await self.fn(request.prompt)
        return Response(
            content=content,
            provider=self.name,
            model="function",
            metadata={"adapter_type": "function"},
        )


class TransformAdapter(Pipeline):
    """Apply an input transform, run the wrapped pipeline, then apply an output transform."""

    def __init__(
        self,
        pipeline: Pipeline,
        input_transform: Transform | None = None,
        output_transform: Transform | None = None,
        *opts: Option,
    ) -> None:
        self.pipeline = pipeline
        self.input_transform = input_transform
        self.output_transform = output_transform
        self.name = f"transform({pipeline.describe()})"
        self.options = build_options(opts)

    def describe(self) -> str:
        return self.name

    async def execute_with_request(self, request: Request) -> Response:
        if self.input_transform is not None:
            try:
                request = dataclasses.replace(request, prompt=self.input_transform(request.prompt))
            except Exception as exc:
                raise PipelineError(f"input transformation failed: {exc}") from exc

        response = await self.pipeline.execute_with_request(request)

        content = response.content
        if self.output_transform is not None:
            try:
                content = self.output_transform(content)
            except Exception as exc:
                raise PipelineError(f"output transformation failed: {exc}") from exc

        return dataclasses.replace(
            response,
            content=content,
            metadata={**response.metadata, "transformed": True, "transform_adapter": self.name},
        )


def prefix_transform(prefix: str) -> Transform:
    return lambda text: prefix + text


def suffix_transform(suffix: str) -> Transform:
    return lambda text: text + suffix


def wrap_transform(prefix: str, suffix: str) -> Transform:
    return lambda text: prefix + text + suffix


def template_transform(template: str) -> Transform:
    """Substitute the text for every {{input}} or {{.Input}} placeholder."""
    return lambda text: template.replace("{{input}}", text).replace("{{.Input}}", text)


def json_extract_transform(field: str) -> Transform:
    """Pull one top-level field out of a JSON object; other text passes through unchanged."""
    def extract(text: str) -> str:
        try:
            data = json.loads(text)
        except ValueError:
            return text
        if not isinstance(data, dict) or field not in data:
            return text
        value = data[field]
        return value if isinstance(value, str) else json.dumps(value)
    return extract


TransformBuilder = Callable[[dict[str, Any]], Transform]

TRANSFORMS: dict[str, TransformBuilder] = {
    "prefix": lambda c: prefix_transform(c.get("prefix", "")),
    "suffix": lambda c: suffix_transform(c.get("suffix", "")),
    "wrap": lambda c: wrap_transform(c.get("prefix", ""), c.get("suffix", "")),
    "template": lambda c: template_transform(c.get("template", "{{input}}")),
    "json_extract": lambda c: json_extract_transform(c["field"]),
    "strip": lambda c: str.strip,
    "upper": lambda c: str.upper,
    "lower": lambda c: str.lower,
}


def build_transform(kind: str, config: dict[str, Any] | None = None) -> Transform:
    """Build a named transform.

    Raises:
        ConfigurationError: For an unknown kind or a missing required setting.
    """
    builder = TRANSFORMS.get(kind)
    if builder is None:
        raise ConfigurationError(
            f"unknown transform '{kind}' (expected one of: {', '.join(sorted(TRANSFORMS))})"
        )
    try:
        return builder(dict(config or {}))
    except KeyError as exc:
        raise ConfigurationError(f"{kind} transform requires {exc.args[0]}") from None
