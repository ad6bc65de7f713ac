"""
Workflow graph model.

The client treats the graph as opaque beyond these views of it:

* ``to_prompt()``: the executable node map sent as the submission ``prompt``.
* ``to_document()``: comfylink's versioned copy of the graph. Submissions store
  it under ``extra_data.extra_pnginfo.comfylink`` and the server hands it back
  in its history.
* ``ui_workflow``: the frontend's own workflow document, when the graph came
  with one. It is carried verbatim under ``extra_pnginfo.workflow``, which is
  the key the server writes into saved images and the frontend reads back.

Passing the two values of ``graph.to_extra_pnginfo()`` to ``from_embedded``
rebuilds an equal graph for every graph this module builds.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional

from comfylink.client.errors import GraphDecodeError

JsonDict = Dict[str, Any]

GRAPH_DOCUMENT_VERSION = 1
PNGINFO_DOCUMENT_KEY = "comfylink"
PNGINFO_WORKFLOW_KEY = "workflow"
_MISSING = object()


@dataclass(frozen=True)
class PromptNode:
    """One executable node: its class and its (literal or linked) inputs."""

    class_type: str
    inputs: JsonDict = field(default_factory=dict)
    title: Optional[str] = None

    def to_api(self) -> JsonDict:
        node: JsonDict = {"class_type": self.class_type, "inputs": dict(self.inputs)}
        if self.title is not None:
            node["_meta"] = {"title": self.title}
        return node

    @classmethod
    def from_api(cls, node_id: str, data: Any) -> "PromptNode":
        if not isinstance(data, Mapping):
            raise GraphDecodeError(f"node {node_id!r} is not an object", path=f"nodes.{node_id}")
        class_type = data.get("class_type")
        if not isinstance(class_type, str) or not class_type:
            raise GraphDecodeError(
                f"node {node_id!r} has no class_type", path=f"nodes.{node_id}.class_type"
            )
        inputs = data.get("inputs", {})
        if not isinstance(inputs, Mapping):
            raise GraphDecodeError(
                f"node {node_id!r} inputs are not an object", path=f"nodes.{node_id}.inputs"
            )
        meta = data.get("_meta")
        title = meta.get("title") if isinstance(meta, Mapping) else None
        return cls(class_type=class_type, inputs=dict(inputs), title=title)


@dataclass
class WorkflowGraph:
    """Executable node map, free-form metadata, and the optional frontend workflow."""

    nodes: Dict[str, PromptNode] = field(default_factory=dict)
    extra: JsonDict = field(default_factory=dict)
    ui_workflow: Optional[JsonDict] = None

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[str]:
        return iter(self.nodes)

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    def add_node(
        self,
        node_id: Any,
        class_type: str,
        inputs: Optional[JsonDict] = None,
        *,
        title: Optional[str] = None,
    ) -> PromptNode:
        node = PromptNode(class_type=class_type, inputs=dict(inputs or {}), title=title)
        self.nodes[str(node_id)] = node
        return node

    def to_prompt(self) -> JsonDict:
        """Node map in the server's submission format."""
        return {node_id: node.to_api() for node_id, node in self.nodes.items()}

    def to_document(self) -> JsonDict:
        """Self-describing serialized copy, suitable for embedding in job metadata."""
        return {
            "version": GRAPH_DOCUMENT_VERSION,
            "nodes": self.to_prompt(),
            "extra": json.loads(json.dumps(self.extra)),
        }

    def to_extra_pnginfo(self) -> JsonDict:
        """Metadata block sent as ``extra_data.extra_pnginfo`` with a submission."""
        info: JsonDict = {PNGINFO_DOCUMENT_KEY: self.to_document()}
        if self.ui_workflow is not None:
            info[PNGINFO_WORKFLOW_KEY] = json.loads(json.dumps(self.ui_workflow))
        return info

    @classmethod
    def from_prompt(cls, prompt: Mapping[str, Any], *, extra: Optional[JsonDict] = None) -> "WorkflowGraph":
        """Build from an API-format node map (as exported by "Save (API Format)")."""
        if not isinstance(prompt, Mapping):
            raise GraphDecodeError("prompt is not an object")
        nodes = {str(node_id): PromptNode.from_api(str(node_id), data) for node_id, data in prompt.items()}
        return cls(nodes=nodes, extra=dict(extra or {}))

    @classmethod
    def from_document(cls, document: Any) -> "WorkflowGraph":
        """Re-parse a value produced by :meth:`to_document`."""
        if not isinstance(document, Mapping):
            raise GraphDecodeError("workflow document is not an object")
        version = document.get("version")
        if version != GRAPH_DOCUMENT_VERSION:
            raise GraphDecodeError(
                f"unsupported workflow document version {version!r}", path="version"
            )
        nodes = document.get("nodes")
        if not isinstance(nodes, Mapping):
            raise GraphDecodeError("workflow document has no node map", path="nodes")
        extra = document.get("extra", {})
        if not isinstance(extra, Mapping):
            raise GraphDecodeError("workflow document extra is not an object", path="extra")
        return cls.from_prompt(nodes, extra=dict(extra))

    @classmethod
    def from_embedded(cls, document: Any = None, ui_workflow: Any = None) -> "WorkflowGraph":
        """
        Rebuild from the values stored under ``extra_pnginfo``; ``None`` means absent.

        A frontend workflow is kept verbatim whatever its format, as long as it
        is an object. Jobs queued by the frontend carry only that.
        """
        if ui_workflow is not None and not isinstance(ui_workflow, Mapping):
            raise GraphDecodeError(
                "embedded frontend workflow is not an object",
                path=f"extra_pnginfo.{PNGINFO_WORKFLOW_KEY}",
            )
        graph = cls.from_document(document) if document is not None else cls()
        graph.ui_workflow = dict(ui_workflow) if ui_workflow is not None else None
        return graph

    @classmethod
    def from_json(cls, text: str) -> "WorkflowGraph":
        """Parse a comfylink document, a frontend workflow, or a bare API-format node map."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise GraphDecodeError(f"workflow file is not JSON: {exc}") from exc
        if isinstance(data, Mapping) and isinstance(data.get("nodes"), list):
            return cls(ui_workflow=dict(data))
        if isinstance(data, Mapping) and "version" in data and "nodes" in data:
            return cls.from_document(data)
        return cls.from_prompt(data)


class NestedDocument:
    """
    Read-only view over an untyped JSON value.

    Path navigation returns ``None`` as soon as a step is missing or lands on a
    non-object, so callers decide whether absence is tolerable.
    """

    def __init__(self, value: Any) -> None:
        self._value = value

    @property
    def value(self) -> Any:
        return self._value

    def get_path(self, *keys: str) -> Optional[Any]:
        current = self._value
        for key in keys:
            if not isinstance(current, Mapping):
                return None
            current = current.get(key, _MISSING)
            if current is _MISSING:
                return None
        return current

    def descend(self, *keys: str) -> Optional["NestedDocument"]:
        value = self.get_path(*keys)
        return None if value is None else NestedDocument(value)

    def reparse(self, *keys: str) -> Optional[Any]:
        """Value at ``keys`` after a serialize/deserialize cycle, detached from the source."""
        value = self.get_path(*keys)
        if value is None:
            return None
        return json.loads(json.dumps(value))
