from .schemas.graph import Category, GraphData

NODE_KINDS = {
    Category.INPUT: "Starting points or initial topics",
    Category.SYSTEM: "Core concepts, services or processes",
    Category.ACTION: "Tasks or actions to be taken",
    Category.DECISION: "Decision points or choices made",
    Category.OUTPUT: "Results or outcomes",
}


def describe_node_kinds():
    return "\n".join(f"- {kind.value}: {text}" for kind, text in NODE_KINDS.items())


def describe_graph(graph: GraphData):
    if not graph.nodes:
        return "(empty graph)"
    lines = ["Nodes:"]
    lines.extend(f"- [{n.id}] {n.label} ({n.category.value})" for n in graph.nodes)
    lines.append("Edges:")
    labels = {n.id: n.label for n in graph.nodes}
    for e in graph.edges:
        lines.append(f"- [{e.source}] {labels.get(e.source, '?')} -> [{e.target}] {labels.get(e.target, '?')}: {e.label or ''}")
    return "\n".join(lines)


def get_extraction_prompt(text, existing_labels=()):
    existing = "\n".join(f"- {label}" for label in existing_labels) or "(none yet)"
    return f"""You are analyzing a live conversation and turning it into a knowledge graph.

[CONVERSATION]
"{text}"

[NODES ALREADY ON THE BOARD]
{existing}

[INSTRUCTIONS]
1. Extract key topics, decisions, actions and systems that are NOT already on the board.
2. Connect new nodes to each other or to existing nodes. Refer to nodes by their exact label.
3. Mark importance as small, medium or large.

Node types:
{describe_node_kinds()}

Return ONLY valid JSON, no other text:
{{
  "nodes": [
    {{"label": "Node name", "type": "Decision|Action|System|Input|Output", "importance": "small|medium|large"}}
  ],
  "edges": [
    {{"source": "Source node label", "target": "Target node label", "relationship": "short description"}}
  ]
}}"""


def get_refinement_prompt(graph: GraphData):
    return f"""You are cleaning up a knowledge graph built from a conversation.

[CURRENT GRAPH]
{describe_graph(graph)}

[INSTRUCTIONS]
1. Remove nodes that are noise or redundant.
2. Rename or re-categorize nodes whose label or type is unclear.
3. Add edges for relationships that are obviously missing. Use node ids.

Return ONLY valid JSON, no other text:
{{
  "nodesToRemove": ["node-id"],
  "nodesToUpdate": [{{"id": "node-id", "newLabel": "Better label", "newCategory": "Action"}}],
  "edgesToAdd": [{{"source": "node-id", "target": "node-id", "relationship": "short description"}}]
}}"""


def get_restructure_prompt(graph: GraphData):
    return f"""You are reorganizing a knowledge graph built from a conversation into a clear hierarchy.

[CURRENT GRAPH]
{describe_graph(graph)}

[INSTRUCTIONS]
1. Keep the ids of nodes you keep. Omit the id for brand new nodes.
2. Every node except the top-level topics should have a parent.

Node types:
{describe_node_kinds()}

Return ONLY valid JSON with the complete new graph, no other text:
{{
  "nodes": [{{"id": "node-id", "label": "Node name", "type": "System"}}],
  "edges": [{{"source": "node-id or label", "target": "node-id or label", "relationship": "short description"}}]
}}"""


def get_summary_prompt(label, transcripts_text, window_ms):
    return f"""Given this conversation context from the last {window_ms // 1000} seconds:

{transcripts_text or "(no transcript available)"}

Please provide a brief 2-3 sentence summary of what was discussed about: "{label}"

Be specific and focus on the key points related to this topic."""
