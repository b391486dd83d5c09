#!/usr/bin/env python3
"""
CLI Script for Querying a Knowledge-Graph Snapshot.

Usage:
    python scripts/query_graph.py --snapshot data/snapshot.json --search "imbalance in price"
    python scripts/query_graph.py --snapshot data/snapshot.json --similar fvg --direct
    python scripts/query_graph.py --snapshot data/snapshot.json --cluster 0.65
    python scripts/query_graph.py --snapshot data/snapshot.json --enrich notes/fvg.md
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from rich.console import Console
from rich.table import Table

from semgraph.engine import KnowledgeGraphEngine
from semgraph.knowledge.clustering import average_cluster_size
from semgraph.knowledge.schemas import RebuildReport, SimilarityMode
from semgraph.utils.logger import get_logger, setup_logging

console = Console()
logger = get_logger(__name__)


def load_snapshot(path: Path) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """
    Read a snapshot file.

    Args:
        path: JSON file with "entities" and "relationships" arrays

    Returns:
        Tuple of (entities, relationships) as plain dicts
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    return list(data.get("entities", [])), list(data.get("relationships", []))


def build_engine(path: Path) -> tuple[KnowledgeGraphEngine, RebuildReport]:
    """Create an engine and load a snapshot file into it."""
    entities, relationships = load_snapshot(path)
    engine = KnowledgeGraphEngine()
    report = engine.build_from_entities(entities, relationships)
    return engine, report


def _display_report(report: RebuildReport) -> None:
    table = Table(title="Snapshot")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Generation", str(report.generation))
    table.add_row("Nodes", str(report.node_count))
    table.add_row("Edges", str(report.edge_count))
    table.add_row("Dropped edges", str(report.dropped_edges))
    table.add_row("Duplicate nodes", str(report.duplicate_nodes))
    table.add_row("Invalid records", str(report.invalid_entities + report.invalid_relationships))
    table.add_row("Duration", f"{report.duration_seconds:.3f}s")

    console.print(table)


def show_search(engine: KnowledgeGraphEngine, query: str, limit: int) -> None:
    hits = engine.semantic_search(query, limit)

    table = Table(title=f"Semantic search: {query}")
    table.add_column("#", style="cyan")
    table.add_column("Entity", style="green")
    table.add_column("Kind", style="yellow")
    table.add_column("Similarity", style="magenta")

    for i, hit in enumerate(hits, 1):
        table.add_row(str(i), hit.node.name, hit.node.kind.value, f"{hit.similarity:.3f}")

    console.print(table)


def show_similar(engine: KnowledgeGraphEngine, node_ref: str, limit: int, direct: bool) -> None:
    node_id = _resolve_node(engine, node_ref)
    if node_id is None:
        console.print(f"[red]Unknown entity: {node_ref}[/red]")
        return

    mode = SimilarityMode.DIRECT if direct else SimilarityMode.GLOBAL
    similar = engine.find_similar_nodes(node_id, limit, mode)

    table = Table(title=f"Similar to {node_ref} ({mode.value})")
    table.add_column("Entity", style="green")
    table.add_column("Connection", style="yellow")
    table.add_column("Similarity", style="magenta")

    for item in similar:
        table.add_row(item.node.name, item.connection_type.value, f"{item.similarity:.3f}")

    console.print(table)


def show_clusters(engine: KnowledgeGraphEngine, threshold: float) -> None:
    clusters = engine.cluster_nodes(threshold)

    table = Table(title=f"Clusters (threshold {threshold:.2f})")
    table.add_column("Cluster", style="cyan")
    table.add_column("Size", style="yellow")
    table.add_column("Members", style="green")

    for cluster_id, members in clusters.items():
        names = [engine.get_node(m).name for m in members if engine.get_node(m) is not None]
        table.add_row(cluster_id, str(len(members)), ", ".join(names))

    console.print(table)
    console.print(f"[dim]Average cluster size: {average_cluster_size(clusters):.2f}[/dim]")


def show_enrichment(engine: KnowledgeGraphEngine, doc_path: Path) -> None:
    report = engine.enrich_from_markdown(doc_path.name, doc_path.read_text(encoding="utf-8"))

    console.print(f"\n[bold]Concepts ({len(report.concepts)}):[/] {', '.join(report.concepts)}")
    console.print(
        f"[bold]Words:[/] {report.word_count}  "
        f"[bold]Density:[/] {report.concept_density:.2f}  "
        f"[bold]Complexity:[/] {report.complexity:.2f}"
    )

    if report.relationships:
        table = Table(title="Candidate relationships")
        table.add_column("Source", style="green")
        table.add_column("Target", style="green")
        table.add_column("Hint", style="yellow")
        table.add_column("Confidence", style="magenta")

        for rel in report.relationships:
            hint = rel.suggested_type.value if rel.suggested_type else rel.relation
            table.add_row(rel.source, rel.target, hint, f"{rel.confidence:.2f}")

        console.print(table)


def _resolve_node(engine: KnowledgeGraphEngine, node_ref: str) -> str | None:
    """Accept either a node id or an exact (case-insensitive) name."""
    if engine.get_node(node_ref) is not None:
        return node_ref
    matches = engine.store.snapshot.find_nodes_by_name(node_ref)
    return matches[0].id if matches else None


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Query a knowledge-graph snapshot"
    )
    parser.add_argument(
        "--snapshot", "-s",
        type=Path,
        required=True,
        help="JSON file with entities and relationships",
    )
    parser.add_argument("--search", help="Free-text semantic search")
    parser.add_argument("--similar", help="Entity id or name to find similar entities for")
    parser.add_argument(
        "--direct",
        action="store_true",
        help="With --similar: only rank directly connected entities",
    )
    parser.add_argument("--cluster", type=float, help="Cluster with this similarity threshold")
    parser.add_argument("--enrich", type=Path, help="Markdown file to enrich")
    parser.add_argument("--limit", "-n", type=int, default=10, help="Maximum results")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )

    args = parser.parse_args(argv)

    # Setup logging
    setup_logging(args.log_level)

    if not args.snapshot.exists():
        console.print(f"[red]Snapshot not found: {args.snapshot}[/red]")
        return 1

    engine, report = build_engine(args.snapshot)
    _display_report(report)

    if args.search:
        show_search(engine, args.search, args.limit)
    if args.similar:
        show_similar(engine, args.similar, args.limit, args.direct)
    if args.cluster is not None:
        show_clusters(engine, args.cluster)
    if args.enrich:
        if not args.enrich.exists():
            console.print(f"[red]File not found: {args.enrich}[/red]")
            return 1
        show_enrichment(engine, args.enrich)

    return 0


if __name__ == "__main__":
    sys.exit(main())
