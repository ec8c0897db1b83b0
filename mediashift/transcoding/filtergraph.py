"""
Parser for ffmpeg filtergraph strings (`-vf`, `-af`, `-lavfi`) and a builder
that wires the parsed description into a PyAV filter graph.

Supported grammar: `;`-separated chains of `,`-separated filters, each filter
optionally wrapped in `[label]` input and output pads. Quotes and backslash
escapes protect separators inside filter arguments.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


class FilterGraphError(ConfigurationError):
    kind = "filtergraph_error"


@dataclass
class FilterSpec:
    name: str
    args: Optional[str] = None
    inputs: List[str] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)


@dataclass
class FilterChain:
    filters: List[FilterSpec]


def _split_top_level(text: str, separator: str) -> List[str]:
    """Split on `separator` outside quotes, brackets and escapes."""
    parts: List[str] = []
    current: List[str] = []
    quote = False
    depth = 0
    escaped = False

    for ch in text:
        if escaped:
            current.append(ch)
            escaped = False
            continue
        if ch == "\\":
            current.append(ch)
            escaped = True
            continue
        if ch == "'":
            quote = not quote
        elif not quote and ch == "[":
            depth += 1
        elif not quote and ch == "]":
            depth -= 1
        if ch == separator and not quote and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(ch)

    if quote:
        raise FilterGraphError(f"Unterminated quote in filtergraph: {text!r}")
    parts.append("".join(current))
    return parts


def _take_labels(text: str, from_end: bool = False) -> Tuple[List[str], str]:
    labels: List[str] = []
    text = text.strip()
    if from_end:
        while text.endswith("]"):
            start = text.rfind("[")
            if start < 0:
                raise FilterGraphError(f"Unbalanced pad label in {text!r}")
            labels.insert(0, text[start + 1:-1])
            text = text[:start].rstrip()
    else:
        while text.startswith("["):
            end = text.find("]")
            if end < 0:
                raise FilterGraphError(f"Unbalanced pad label in {text!r}")
            labels.append(text[1:end])
            text = text[end + 1:].lstrip()
    return labels, text


def _unquote(args: str) -> str:
    out: List[str] = []
    escaped = False
    for ch in args:
        if escaped:
            out.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch != "'":
            out.append(ch)
    return "".join(out)


def parse_filter(text: str) -> FilterSpec:
    inputs, rest = _take_labels(text)
    outputs, body = _take_labels(rest, from_end=True)
    if not body:
        raise FilterGraphError(f"Empty filter in {text!r}")

    name, _, args = body.partition("=")
    name = name.strip()
    if not name:
        raise FilterGraphError(f"Missing filter name in {text!r}")
    return FilterSpec(name=name, args=_unquote(args) if args else None, inputs=inputs, outputs=outputs)


def parse_filtergraph(text: str) -> List[FilterChain]:
    """Parse a filtergraph description into chains of filters."""
    if not text or not text.strip():
        raise FilterGraphError("Empty filtergraph")

    chains: List[FilterChain] = []
    for segment in _split_top_level(text, ";"):
        if not segment.strip():
            continue
        filters = [parse_filter(part) for part in _split_top_level(segment, ",")]
        chains.append(FilterChain(filters))
    return chains


def build_graph(graph, source, sink, description: str) -> None:
    """
    Add the parsed filters to a PyAV `Graph` between `source` and `sink`.

    The first free input pad is fed from `source` and the single free output
    pad drains into `sink`; labelled pads are linked to each other by name.
    """
    chains = parse_filtergraph(description)

    # label -> (context, pad index)
    produced: Dict[str, Tuple[object, int]] = {}
    consumed: List[Tuple[str, object, int]] = []
    free_inputs: List[Tuple[object, int]] = []
    free_outputs: List[Tuple[object, int]] = []

    for chain in chains:
        previous = None
        for position, spec in enumerate(chain.filters):
            context = graph.add(spec.name, spec.args) if spec.args else graph.add(spec.name)

            # A chained input takes pad 0; labelled inputs follow it
            offset = 1 if previous is not None else 0
            for pad, label in enumerate(spec.inputs):
                consumed.append((label, context, pad + offset))
            if previous is not None:
                previous.link_to(context, 0, 0)
            elif not spec.inputs:
                free_inputs.append((context, 0))

            for pad, label in enumerate(spec.outputs):
                if label in produced:
                    raise FilterGraphError(f"Pad label [{label}] produced twice")
                produced[label] = (context, pad)

            last = position == len(chain.filters) - 1
            if spec.outputs:
                previous = None
                if not last:
                    raise FilterGraphError(f"Labelled outputs on {spec.name} must end its chain")
            else:
                previous = context
                if last:
                    free_outputs.append((context, 0))

    for label, context, pad in consumed:
        if label not in produced:
            raise FilterGraphError(f"Pad label [{label}] is never produced")
        producer, out_pad = produced.pop(label)
        producer.link_to(context, out_pad, pad)

    if produced:
        raise FilterGraphError(f"Unconnected output pads: {sorted(produced)}")
    if len(free_inputs) != 1 or len(free_outputs) != 1:
        raise FilterGraphError(
            f"Filtergraph must have exactly one free input and output, got "
            f"{len(free_inputs)} and {len(free_outputs)}"
        )

    first, first_pad = free_inputs[0]
    source.link_to(first, 0, first_pad)
    last_context, last_pad = free_outputs[0]
    last_context.link_to(sink, last_pad, 0)
