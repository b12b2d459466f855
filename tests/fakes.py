"""In-memory stand-ins for the Neo4j driver used across the test suite.

``FakeDriver`` answers transactions from a scripted queue or a handler;
``FakeGraph`` is an in-memory graph that answers the Cypher issued by the
repository, the relation manager and the query engine closely enough to
exercise constraint enforcement and traversal end to end.
"""

from __future__ import annotations

import itertools
import re
from collections import Counter
from collections.abc import Callable
from typing import Any

from neo4j.exceptions import ConstraintError

from organograph.ontology.entities import get_entity_registry

Rows = list[dict[str, Any]]


# ---------------------------------------------------------------------------
# Fake driver
# ---------------------------------------------------------------------------


class FakeResult:
    def __init__(self, rows: Rows) -> None:
        self._rows = rows

    async def data(self) -> Rows:
        return list(self._rows)


class FakeTx:
    def __init__(self, driver: FakeDriver, mode: str) -> None:
        self._driver = driver
        self._mode = mode

    async def run(self, query: str, parameters: dict[str, Any] | None = None) -> FakeResult:
        params = parameters or {}
        self._driver.calls.append((self._mode, query, params))
        return FakeResult(self._driver.handler(query, params))


class FakeSession:
    def __init__(self, driver: FakeDriver) -> None:
        self._driver = driver

    async def __aenter__(self) -> FakeSession:
        self._driver.open_sessions += 1
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self._driver.open_sessions -= 1

    async def execute_read(self, func: Callable) -> Any:
        return await func(FakeTx(self._driver, "read"))

    async def execute_write(self, func: Callable) -> Any:
        return await func(FakeTx(self._driver, "write"))


class FakeDriver:
    """Stand-in for ``neo4j.AsyncDriver``.

    Queries are answered by ``handler``; by default, queued responses are
    returned in order (an empty result once the queue is exhausted).
    """

    def __init__(self, handler: Callable[[str, dict[str, Any]], Rows] | None = None) -> None:
        self.responses: list[Rows] = []
        self.handler = handler or self._next_response
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.databases: list[str | None] = []
        self.open_sessions = 0
        self.closed = False
        self.reachable = True

    def _next_response(self, query: str, params: dict[str, Any]) -> Rows:
        return self.responses.pop(0) if self.responses else []

    def session(self, database: str | None = None) -> FakeSession:
        self.databases.append(database)
        return FakeSession(self)

    async def verify_connectivity(self) -> None:
        if not self.reachable:
            raise OSError("connection refused")

    async def close(self) -> None:
        self.closed = True

    @property
    def queries(self) -> list[str]:
        return [query for _, query, _ in self.calls]


# ---------------------------------------------------------------------------
# In-memory graph
# ---------------------------------------------------------------------------


class FakeGraph:
    """In-memory property graph answering the engine's Cypher by shape."""

    def __init__(self) -> None:
        self.nodes: dict[str, dict[str, Any]] = {}
        self.edges: list[dict[str, str]] = []
        self._ids = itertools.count(1)

    # -- setup helpers -----------------------------------------------------

    def add_node(self, entity_type: str, **props: Any) -> str:
        spec = get_entity_registry()[entity_type]
        node_id = f"4:test:{next(self._ids)}"
        self.nodes[node_id] = {"labels": spec.labels_for(props), "props": dict(props)}
        return node_id

    def add_edge(self, relation_type: str, source: str, target: str) -> str:
        edge_id = f"5:test:{next(self._ids)}"
        self.edges.append({"id": edge_id, "type": relation_type, "from": source, "to": target})
        return edge_id

    def has_edge(self, relation_type: str, source: str, target: str) -> bool:
        return any(
            e["type"] == relation_type and e["from"] == source and e["to"] == target for e in self.edges
        )

    def entity(self, node_id: str) -> dict[str, Any]:
        node = self.nodes[node_id]
        return {"id": node_id, "labels": list(node["labels"]), "props": dict(node["props"])}

    def incident(self, node_id: str) -> list[dict[str, str]]:
        return [e for e in self.edges if node_id in (e["from"], e["to"])]

    def _exists(self, node_id: str, label: str | None = None) -> bool:
        node = self.nodes.get(node_id)
        return node is not None and (label is None or label in node["labels"])

    @staticmethod
    def _anchor_label(query: str, variable: str = "n") -> str | None:
        match = re.search(rf"MATCH \({variable}:(\w+)\)", query)
        return match.group(1) if match else None

    @staticmethod
    def _rel_type(query: str) -> str:
        return re.search(r"\[r:(\w+)\]", query).group(1)

    # -- dispatch ------------------------------------------------------------

    def run(self, query: str, params: dict[str, Any]) -> Rows:
        if "SET n._lock" in query:
            return []
        if "AS endpoint" in query:
            ids = dict.fromkeys([params["source_id"], params["target_id"]])
            return [{"endpoint": self.entity(i)} for i in ids if i in self.nodes]
        if "AS from_id" in query:
            rel_type = self._rel_type(query)
            return [
                {"from_id": e["from"], "to_id": e["to"]}
                for e in self.edges
                if e["type"] == rel_type and (e["from"] in params["ids"] or e["to"] in params["ids"])
            ]
        if "CREATE (a)-[r:" in query:
            edge_id = self.add_edge(self._rel_type(query), params["source_id"], params["target_id"])
            return [{"relation_id": edge_id}]
        if "DETACH DELETE n" in query:
            return [{"deleted": self._detach_delete(params["id"], self._anchor_label(query))}]
        if "DELETE r" in query:
            return [{"deleted": self._delete_edge(self._rel_type(query), params["source_id"], params["target_id"])}]
        if "CREATE (n:" in query:
            return [{"entity": self._create_node(query, params["props"])}]
        if "AS relations" in query:
            return self._relations(query, params["id"])
        if "SET n = $props" in query:
            return [{"entity": self._update_node(query, params["id"], params["props"])}]
        if "AS labels" in query:
            if not self._exists(params["id"], self._anchor_label(query)):
                return []
            return [{"labels": list(self.nodes[params["id"]]["labels"])}]
        if "MATCH ()-[r]->()" in query:
            counts = Counter(e["type"] for e in self.edges)
            return [{"relation_type": t, "count": c} for t, c in counts.items()]
        if "UNWIND labels(n) AS label" in query:
            counts = Counter(label for node in self.nodes.values() for label in node["labels"])
            wanted = params.get("labels")
            return [{"label": l, "count": c} for l, c in counts.items() if wanted is None or l in wanted]
        if "MATCH p = (a)-[*1.." in query:
            depth = int(re.search(r"\[\*1\.\.(\d+)\]", query).group(1))
            return self._paths(params["source_id"], params["target_id"], depth)[: params["limit"]]
        if "AS shared_count" in query:
            return self._shared(self._anchor_label(query, "a"), params["id"], params["relation_types"])
        if "CALL {" in query:
            return self._global_search(query, params["term"], params["limit"])
        if "AS degree" in query:
            return self._degrees(params["types"])[: params["limit"]]
        if "AS total" in query and "WHERE" not in query:
            label = self._anchor_label(query)
            return [{"total": sum(1 for node in self.nodes.values() if label in node["labels"])}]
        if "AS reached" in query:
            return self._reached(query)
        if "RETURN elementId(n) AS id" in query:
            return [{"id": params["id"]}] if self._exists(params["id"], self._anchor_label(query)) else []
        if "elementId(n) = $id" in query and "AS entity" in query:
            if not self._exists(params["id"], self._anchor_label(query)):
                return []
            return [{"entity": self.entity(params["id"])}]
        raise AssertionError(f"FakeGraph cannot answer query:\n{query}")

    # -- handlers ------------------------------------------------------------

    def _create_node(self, query: str, props: dict[str, Any]) -> dict[str, Any]:
        labels = re.search(r"CREATE \(n:([\w:]+)\)", query).group(1).split(":")
        spec = get_entity_registry()[labels[0]]
        for node in self.nodes.values():
            if labels[0] in node["labels"] and node["props"].get(spec.name_field) == props.get(spec.name_field):
                raise ConstraintError(f"Node already exists with {spec.name_field} = {props[spec.name_field]!r}")
        node_id = f"4:test:{next(self._ids)}"
        self.nodes[node_id] = {"labels": labels, "props": dict(props)}
        return self.entity(node_id)

    def _update_node(self, query: str, node_id: str, props: dict[str, Any]) -> dict[str, Any]:
        node = self.nodes[node_id]
        removed = re.search(r"REMOVE n:([\w:]+)", query)
        added = re.search(r"SET n:([\w:]+)", query)
        labels = [l for l in node["labels"] if not removed or l not in removed.group(1).split(":")]
        for label in added.group(1).split(":") if added else []:
            if label not in labels:
                labels.append(label)
        node["labels"] = labels
        node["props"] = dict(props)
        return self.entity(node_id)

    def _detach_delete(self, node_id: str, label: str | None) -> int:
        if not self._exists(node_id, label):
            return 0
        self.edges = [e for e in self.edges if node_id not in (e["from"], e["to"])]
        del self.nodes[node_id]
        return 1

    def _delete_edge(self, relation_type: str, source: str, target: str) -> int:
        before = len(self.edges)
        self.edges = [
            e for e in self.edges if not (e["type"] == relation_type and e["from"] == source and e["to"] == target)
        ]
        return before - len(self.edges)

    def _relations(self, query: str, node_id: str) -> Rows:
        if not self._exists(node_id, self._anchor_label(query)):
            return []
        pattern = re.search(r"\(n\)(<?)-\[r(?::(\w+))?\]-(>?)\(m\)", query)
        incoming_only, rel_type, outgoing_only = pattern.group(1), pattern.group(2), pattern.group(3)
        relations = []
        for edge in self.incident(node_id):
            outgoing = edge["from"] == node_id
            if rel_type and edge["type"] != rel_type:
                continue
            if (incoming_only and outgoing) or (outgoing_only and not outgoing):
                continue
            other = edge["to"] if outgoing else edge["from"]
            relations.append({"relation_type": edge["type"], "outgoing": outgoing, "related": self.entity(other)})
        return [{"id": node_id, "entity": self.entity(node_id), "relations": relations}]

    def _paths(self, source: str, target: str, depth: int) -> Rows:
        if source not in self.nodes or target not in self.nodes:
            return []
        found: list[tuple[list[str], list[dict[str, str]]]] = []

        def walk(node: str, visited: set[str], nodes: list[str], rels: list[dict[str, str]]) -> None:
            if len(rels) >= depth:
                return
            for edge in self.incident(node):
                other = edge["to"] if edge["from"] == node else edge["from"]
                if other in visited:
                    continue
                if other == target:
                    found.append((nodes + [other], rels + [edge]))
                    continue
                walk(other, visited | {other}, nodes + [other], rels + [edge])

        walk(source, {source}, [source], [])
        found.sort(key=lambda item: len(item[1]))
        return [
            {
                "nodes": [self.entity(n) for n in nodes],
                "rels": [{"type": e["type"], "start": e["from"]} for e in rels],
                "hops": len(rels),
            }
            for nodes, rels in found
        ]

    def _shared(self, label: str, anchor: str, relation_types: list[str]) -> Rows:
        shared: dict[tuple[str, str], set[str]] = {}
        for first in self.incident(anchor):
            if first["type"] not in relation_types:
                continue
            neighbour = first["to"] if first["from"] == anchor else first["from"]
            for second in self.incident(neighbour):
                if second["type"] != first["type"] or second["id"] == first["id"]:
                    continue
                candidate = second["to"] if second["from"] == neighbour else second["from"]
                if candidate == anchor or not self._exists(candidate, label):
                    continue
                shared.setdefault((candidate, first["type"]), set()).add(neighbour)
        return [
            {"candidate": self.entity(c), "relation_type": t, "shared_count": len(n)}
            for (c, t), n in shared.items()
        ]

    def _reached(self, query: str) -> Rows:
        label, rel_type = re.search(r"MATCH \(n:(\w+)\)-\[:(\w+)\]->\(t\)", query).groups()
        targets = dict.fromkeys(
            e["to"] for e in self.edges if e["type"] == rel_type and self._exists(e["from"], label)
        )
        return [{"reached": self.entity(node_id)} for node_id in targets]

    def _global_search(self, query: str, term: str, limit: int) -> Rows:
        rows = []
        branches = re.findall(
            r"MATCH \(n:(\w+)\) WHERE (.*?) RETURN n ORDER BY toLower\(toString\(n\.(\w+)\)\) LIMIT", query
        )
        for label, condition, order_field in branches:
            fields = re.findall(r"n\.(\w+)", condition)
            matches = [
                node_id
                for node_id, node in self.nodes.items()
                if label in node["labels"]
                and any(term.lower() in str(node["props"].get(f, "")).lower() for f in fields)
            ]
            matches.sort(key=lambda node_id: str(self.nodes[node_id]["props"].get(order_field, "")).lower())
            rows.extend({"entity": self.entity(node_id)} for node_id in matches[:limit])
        return rows

    def _degrees(self, types: list[str]) -> Rows:
        rows = [
            {"entity": self.entity(node_id), "degree": len(self.incident(node_id))}
            for node_id, node in self.nodes.items()
            if any(label in types for label in node["labels"])
        ]
        rows.sort(key=lambda row: -row["degree"])
        return rows

