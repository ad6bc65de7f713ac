"""
Rebuilds the server's job history into :class:`HistoryRecord` objects.

Each history entry arrives as::

    {
        "prompt": [ordinal, prompt_id, node_map, extra_data, output_node_ids],
        "outputs": {"<node id>": {"images": [{filename, subfolder, type}, ...]}},
        "status": {...}
    }

The positional ``prompt`` array is a closed contract: a short array or a
non-numeric ordinal fails the whole reconstruction. The embedded graph is
optional (a job can be queued without metadata); when present but unreadable
only that record is affected. A frontend workflow stored under
``extra_pnginfo.workflow`` is kept verbatim in any format.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

from comfylink.client.errors import GraphDecodeError, HistoryDecodeError
from comfylink.client.graph import (
    PNGINFO_DOCUMENT_KEY,
    PNGINFO_WORKFLOW_KEY,
    NestedDocument,
    WorkflowGraph,
)
from comfylink.client.models import DataOutput, HistoryRecord, PayloadDecodeError
from comfylink.utils.logging import LoggerFactory

logger = LoggerFactory.get_logger("client.history")

ORDINAL_SLOT = 0
EXTRA_DATA_SLOT = 3
MIN_PROMPT_SLOTS = 4
GRAPH_PATH = ("extra_pnginfo", PNGINFO_DOCUMENT_KEY)
UI_WORKFLOW_PATH = ("extra_pnginfo", PNGINFO_WORKFLOW_KEY)


def reconstruct_history(payload: Any) -> Dict[str, HistoryRecord]:
    """Rebuild every entry of a ``history`` response; all or nothing."""
    if not isinstance(payload, Mapping):
        raise HistoryDecodeError("history response is not an object")

    records: Dict[str, HistoryRecord] = {}
    for job_id, entry in payload.items():
        records[job_id] = reconstruct_entry(job_id, entry)
    return records


def reconstruct_entry(job_id: str, entry: Any) -> HistoryRecord:
    if not isinstance(entry, Mapping):
        raise HistoryDecodeError(f"history entry {job_id} is not an object", job_id=job_id)

    prompt = entry.get("prompt")
    if not isinstance(prompt, list) or len(prompt) < MIN_PROMPT_SLOTS:
        raise HistoryDecodeError(
            f"history entry {job_id} has no {MIN_PROMPT_SLOTS}-slot prompt array",
            job_id=job_id,
        )

    graph, graph_error = _extract_graph(job_id, prompt[EXTRA_DATA_SLOT])
    status = entry.get("status")

    return HistoryRecord(
        job_id=job_id,
        ordinal=_read_ordinal(job_id, prompt[ORDINAL_SLOT]),
        graph=graph,
        graph_error=graph_error,
        outputs=_rebuild_outputs(job_id, entry.get("outputs")),
        status=dict(status) if isinstance(status, Mapping) else None,
    )


def _read_ordinal(job_id: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise HistoryDecodeError(
            f"history entry {job_id} ordinal is not numeric: {value!r}", job_id=job_id
        )
    if isinstance(value, float) and not value.is_integer():
        raise HistoryDecodeError(
            f"history entry {job_id} ordinal is not integral: {value!r}", job_id=job_id
        )
    return int(value)


def _extract_graph(job_id: str, extra_data: Any) -> Tuple[Optional[WorkflowGraph], Optional[str]]:
    extra = NestedDocument(extra_data)
    document = extra.reparse(*GRAPH_PATH)
    ui_workflow = extra.reparse(*UI_WORKFLOW_PATH)
    if document is None and ui_workflow is None:
        return WorkflowGraph(), None
    try:
        return WorkflowGraph.from_embedded(document, ui_workflow), None
    except GraphDecodeError as exc:
        logger.warning(
            "History entry carries an unreadable workflow graph",
            extra_context={"job_id": job_id, "error": exc.message},
        )
        return None, exc.message


def _rebuild_outputs(job_id: str, outputs: Any) -> Dict[int, List[DataOutput]]:
    if outputs is None:
        return {}
    if not isinstance(outputs, Mapping):
        raise HistoryDecodeError(f"history entry {job_id} outputs is not an object", job_id=job_id)

    rebuilt: Dict[int, List[DataOutput]] = {}
    for node_key, node_outputs in outputs.items():
        try:
            node_id = int(node_key)
        except (TypeError, ValueError):
            raise HistoryDecodeError(
                f"history entry {job_id} has non-integer output node id {node_key!r}",
                job_id=job_id,
            ) from None
        images = node_outputs.get("images") if isinstance(node_outputs, Mapping) else None
        try:
            rebuilt[node_id] = [DataOutput.from_api(image) for image in images or []]
        except PayloadDecodeError as exc:
            raise HistoryDecodeError(
                f"history entry {job_id} node {node_id} output is malformed: {exc}",
                job_id=job_id,
            ) from exc
    return rebuilt


def order_by_ordinal(records: Mapping[str, HistoryRecord]) -> List[HistoryRecord]:
    """Stable ascending sort; equal ordinals keep the mapping's order."""
    return sorted(records.values(), key=lambda record: record.ordinal)
