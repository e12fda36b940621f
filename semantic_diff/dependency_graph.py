"""Dependency graph of a semantic context, with DOT and text-tree export."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set


class EdgeType(str, Enum):
    FUNCTION_CALL = "FunctionCall"
    TYPE_USAGE = "TypeUsage"
    CONSTANT_REFERENCE = "ConstantReference"
    VARIABLE_REFERENCE = "VariableReference"
    IMPORT_DEPENDENCY = "ImportDependency"
    MODULE_DEPENDENCY = "ModuleDependency"


NODE_COLORS: Dict[str, str] = {
    "function": "lightblue",
    "method": "lightcyan",
    "type": "lightgreen",
    "constant": "lightyellow",
    "variable": "orange",
    "import": "lightgray",
    "module": "pink",
}


@dataclass
class GraphNode:
    node_id: str
    kind: str
    name: str
    file_path: str = ""
    is_target: bool = False


@dataclass
class GraphEdge:
    src: str
    dst: str
    edge_type: EdgeType


@dataclass
class DependencyGraph:
    nodes: Dict[str, GraphNode] = field(default_factory=dict)
    edges: List[GraphEdge] = field(default_factory=list)

    @staticmethod
    def node_id(kind: str, name: str, scope: str = "") -> str:
        """Graph key; *scope* keeps same-named declarations of different packages apart."""
        return f"{kind}:{scope}:{name}" if scope else f"{kind}:{name}"

    def add_node(
        self,
        kind: str,
        name: str,
        file_path: str = "",
        is_target: bool = False,
        scope: str = "",
    ) -> str:
        node_id = self.node_id(kind, name, scope)
        existing = self.nodes.get(node_id)
        if existing is None:
            self.nodes[node_id] = GraphNode(node_id, kind, name, file_path, is_target)
        elif is_target:
            existing.is_target = True
        return node_id

    def add_edge(self, src: str, dst: str, edge_type: EdgeType) -> None:
        if src == dst:
            return
        edge = GraphEdge(src, dst, edge_type)
        if edge not in self.edges:
            self.edges.append(edge)

    @property
    def target(self) -> Optional[GraphNode]:
        return next((n for n in self.nodes.values() if n.is_target), None)

    def successors(self, node_id: str) -> List[GraphEdge]:
        return [e for e in self.edges if e.src == node_id]

    def to_dot(self) -> str:
        lines = ["digraph DependencyGraph {"]
        lines.append("  rankdir=LR;")
        lines.append("  node [shape=box, style=filled];")

        for node in self.nodes.values():
            color = NODE_COLORS.get(node.kind, "white")
            style = ', style="filled,bold"' if node.is_target else ""
            label = f"{node.kind}\\n{node.name}"
            lines.append(f'  "{_esc(node.node_id)}" [label="{_esc(label)}", fillcolor={color}{style}];')

        for edge in self.edges:
            lines.append(
                f'  "{_esc(edge.src)}" -> "{_esc(edge.dst)}" [label="{edge.edge_type.value}"];'
            )

        lines.append("}")
        return "\n".join(lines)

    def to_text_tree(self) -> str:
        """Indented tree of outgoing edges, rooted at the change target."""
        root = self.target
        if root is None:
            return ""
        lines = [f"{root.kind}: {root.name}"]
        self._render_children(root.node_id, 1, {root.node_id}, lines)
        return "\n".join(lines)

    def _render_children(self, node_id: str, depth: int, seen: Set[str], lines: List[str]) -> None:
        for edge in self.successors(node_id):
            child = self.nodes.get(edge.dst)
            if child is None:
                continue
            marker = " (see above)" if child.node_id in seen else ""
            lines.append(f"{'  ' * depth}└─ [{edge.edge_type.value}] {child.kind}: {child.name}{marker}")
            if not marker:
                seen.add(child.node_id)
                self._render_children(child.node_id, depth + 1, seen, lines)


def _esc(text: str) -> str:
    return text.replace('"', '\\"')
