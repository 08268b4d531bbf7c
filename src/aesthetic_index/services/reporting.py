"""Report generation for scores, collections and pipeline health."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from tabulate import tabulate

if TYPE_CHECKING:
    from aesthetic_index.models import CollectionIndex, PublishedScore
    from aesthetic_index.pipeline import UnscoredProgress
    from aesthetic_index.services.worker import BatchResult


def format_leaderboard(rows: list[tuple[PublishedScore, str]], title: str = "Leaderboard") -> str:
    """Render published scores as a markdown table.

    Args:
        rows: Published scores paired with their collection id, best first.
        title: Markdown heading.

    Returns:
        Markdown string.
    """
    if not rows:
        return f"# {title}\n\nNo published scores yet.\n"

    table = [
        [
            rank,
            score.item_id,
            collection_id,
            f"{score.score:.2f}",
            f"{score.confidence:.1f}",
            "yes" if score.provisional else "no",
            f"{score.rating_mean:.0f} ± {score.rating_uncertainty:.0f}",
        ]
        for rank, (score, collection_id) in enumerate(rows, 1)
    ]
    body = tabulate(
        table,
        headers=["Rank", "Item", "Collection", "Score", "Confidence", "Provisional", "Rating"],
        tablefmt="github",
        disable_numparse=True,
    )
    return f"# {title}\n\n{body}\n"


def format_collection_indices(indices: list[CollectionIndex]) -> str:
    """Render stored collection indices as a markdown table."""
    if not indices:
        return "# Collection Index\n\nNo collection indices computed yet.\n"

    table = [
        [
            idx.collection_id,
            f"{idx.index_score:.2f}",
            f"{idx.confidence:.0f}",
            "yes" if idx.provisional else "no",
            f"{idx.trimmed_mean:.2f}",
            f"{idx.cohesion_penalty:.1%}",
            f"{idx.scored_items}/{idx.total_items}",
        ]
        for idx in indices
    ]
    body = tabulate(
        table,
        headers=["Collection", "Index", "Confidence", "Provisional", "Trimmed mean", "Penalty", "Scored"],
        tablefmt="github",
        disable_numparse=True,
    )
    return f"# Collection Index\n\n{body}\n"


def format_batch_result(result: BatchResult) -> str:
    rows = [
        ["Claimed", result.claimed],
        ["Processed", result.processed],
        ["Published", result.published],
        ["Skipped", result.skipped],
        ["Errors", len(result.errors)],
        ["Duration (ms)", f"{result.duration_ms:.0f}"],
        ["Stopped early", "yes" if result.stopped_early else "no"],
        ["Status", "ok" if result.success else "FAILED"],
    ]
    return tabulate(rows, tablefmt="github", disable_numparse=True)


def format_status(status: dict[str, Any]) -> str:
    """Render the pipeline status mapping as a two-column table."""
    rows = [[key.replace("_", " "), value] for key, value in status.items()]
    return tabulate(rows, headers=["Metric", "Value"], tablefmt="github", disable_numparse=True)


def format_unscored_progress(progress: UnscoredProgress) -> str:
    """Render how far an item is from its first publish."""
    rows = [
        [name.replace("_", " "), have, progress.required[name], progress.needed.get(name, 0)]
        for name, have in progress.have.items()
    ]
    body = tabulate(
        rows,
        headers=["Requirement", "Have", "Required", "Needed"],
        tablefmt="github",
        disable_numparse=True,
    )
    verdict = "ready to publish" if progress.ready else "awaiting data"
    return (
        f"# {progress.item_id}: {verdict}\n\n"
        f"State: {progress.state}, candidate confidence {progress.confidence:.1f}\n\n{body}\n"
    )
